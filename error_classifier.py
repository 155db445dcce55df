"""
Error Classifier Module

Turns failures reported by the Docker daemon into a small typed taxonomy.
Typed matchers look at the exception first (transport errors, HTTP status);
text matchers fall back to the daemon's free-text messages. The first matcher
that returns a result wins.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, List

from docker.errors import APIError, DockerException
from requests.exceptions import ConnectionError as TransportConnectionError
from requests.exceptions import RequestException

from utils import (
    logger,
    RUNTIME_ERRORS,
    ContainerException,
    DaemonUnreachableError,
    DockerManagerException,
)


class ErrorKind(str, Enum):
    DAEMON_UNREACHABLE = "daemon_unreachable"
    IMAGE_RESOLUTION_FAILED = "image_resolution_failed"
    NAME_CONFLICT = "name_conflict"
    PORT_CONFLICT = "port_conflict"
    START_FAILED = "start_failed"
    GENERIC = "generic"


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    raw_message: str
    conflicting_port: Optional[int] = None

    def with_kind(self, kind: ErrorKind) -> "ClassifiedError":
        return ClassifiedError(kind, self.raw_message, self.conflicting_port)


# A matcher receives the message and, when available, the original exception
Matcher = Callable[[str, Optional[BaseException]], Optional[ClassifiedError]]

# Exceptions raised by the SDK or its HTTP transport
RUNTIME_FAILURES = (DockerException, RequestException)

BIND_ADDRESS_MARKER = "0.0.0.0:"

DAEMON_UNREACHABLE_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error while fetching server api version",
    "docker.sock",
)


def extract_conflicting_port(message: str) -> Optional[int]:
    """Read the digits that follow "0.0.0.0:" up to the next colon"""
    start = message.find(BIND_ADDRESS_MARKER)
    if start < 0:
        return None
    segment = message[start + len(BIND_ADDRESS_MARKER):].split(":", 1)[0]
    digits = ""
    for ch in segment:
        if not ch.isdigit():
            break
        digits += ch
    return int(digits) if digits else None


def _port_conflict(message: str) -> ClassifiedError:
    return ClassifiedError(
        ErrorKind.PORT_CONFLICT, message, extract_conflicting_port(message)
    )


def match_transport_failure(message, exc):
    if isinstance(exc, TransportConnectionError):
        return ClassifiedError(ErrorKind.DAEMON_UNREACHABLE, message)
    return None


def match_api_name_conflict(message, exc):
    # Name clashes come back as 409 Conflict from the create endpoint
    if isinstance(exc, APIError) and exc.status_code == 409:
        explanation = (exc.explanation or "").lower()
        if "container name" in explanation:
            return ClassifiedError(ErrorKind.NAME_CONFLICT, message)
    return None


def match_daemon_unreachable(message, exc):
    # An APIError carries a daemon response, so the daemon was reachable
    if isinstance(exc, APIError):
        return None
    lowered = message.lower()
    if any(marker in lowered for marker in DAEMON_UNREACHABLE_MARKERS):
        return ClassifiedError(ErrorKind.DAEMON_UNREACHABLE, message)
    return None


def match_name_conflict(message, exc):
    if "already in use" in message and "container name" in message:
        return ClassifiedError(ErrorKind.NAME_CONFLICT, message)
    return None


def match_bind_host_port(message, exc):
    if "bind host port" in message:
        return _port_conflict(message)
    return None


def match_address_in_use(message, exc):
    if "address already in use" in message:
        return _port_conflict(message)
    return None


def match_port_allocated(message, exc):
    if "port is already allocated" in message:
        return _port_conflict(message)
    return None


DEFAULT_MATCHERS: List[Matcher] = [
    match_transport_failure,
    match_api_name_conflict,
    match_daemon_unreachable,
    match_name_conflict,
    match_bind_host_port,
    match_address_in_use,
    match_port_allocated,
]


class ErrorClassifier:
    def __init__(self, matchers: Optional[List[Matcher]] = None):
        self.matchers = list(matchers) if matchers is not None else list(DEFAULT_MATCHERS)

    def classify(
        self, raw_message: str, exc: Optional[BaseException] = None
    ) -> ClassifiedError:
        for matcher in self.matchers:
            result = matcher(raw_message, exc)
            if result is not None:
                return result
        return ClassifiedError(ErrorKind.GENERIC, raw_message)

    def classify_exception(self, exc: BaseException) -> ClassifiedError:
        if isinstance(exc, APIError) and exc.explanation:
            message = str(exc.explanation)
        else:
            message = str(exc)
        classified = self.classify(message, exc)
        RUNTIME_ERRORS.labels(kind=classified.kind.value).inc()
        logger.warning(
            "Runtime failure classified",
            kind=classified.kind.value,
            conflicting_port=classified.conflicting_port,
            message=message,
            exception_type=type(exc).__name__,
        )
        return classified


default_classifier = ErrorClassifier()


def classify(raw_message: str) -> ClassifiedError:
    return default_classifier.classify(raw_message)


def classify_exception(exc: BaseException) -> ClassifiedError:
    return default_classifier.classify_exception(exc)


def runtime_error(action: str, exc: BaseException) -> DockerManagerException:
    """Map an SDK failure during `action` to the HTTP-facing exception"""
    classified = classify_exception(exc)
    if classified.kind is ErrorKind.DAEMON_UNREACHABLE:
        return DaemonUnreachableError(f"Docker daemon is not accessible: {exc}")
    return ContainerException(f"Error {action}: {classified.raw_message}")
