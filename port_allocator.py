"""
Port Allocator Module

Decides which host port a new container publishes on. A port is taken when it
is reserved for this service or already published by any known container,
running or stopped. Nothing is locked between the check and the create call;
a lost race is caught afterwards from the daemon's bind error.
"""

from typing import Iterable, Optional, Set

from config import PORT_SEARCH_CEILING, PORT_FALLBACK_FLOOR
from models import ContainerSummary, PortBinding
from utils import logger, ClientInputError, PortExhaustedError

MAX_PORT = 65535


def parse_port_spec(spec: Optional[str]) -> Optional[PortBinding]:
    """Parse "hostPort:containerPort"; an empty spec means no binding"""
    if spec is None or not spec.strip():
        return None

    parts = [part.strip() for part in spec.split(":")]
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ClientInputError(
            f"Invalid port mapping: {spec}",
            {"suggestion": "Use the form hostPort:containerPort, e.g. 8080:80"},
        )

    host_part, container_part = parts
    try:
        host_port = int(host_part)
    except ValueError:
        raise ClientInputError(f"Invalid host port: {host_part}")
    if not 1 <= host_port <= MAX_PORT:
        raise ClientInputError(
            f"Invalid host port: {host_part}",
            {"suggestion": f"Host port must be between 1 and {MAX_PORT}"},
        )

    return PortBinding(host_port=host_port, container_port=container_part)


def active_bindings(containers: Iterable[ContainerSummary]) -> Set[int]:
    """Every host port published by the given containers"""
    return {port for c in containers for port in c.published_host_ports}


def search_order(requested: int):
    """Candidate ports, ascending above the request, then the fallback range.

    The fallback only covers ports not already visited by the first pass.
    """
    yield from range(requested + 1, PORT_SEARCH_CEILING + 1)
    fallback_end = min(requested, PORT_SEARCH_CEILING)
    yield from range(PORT_FALLBACK_FLOOR, fallback_end + 1)


def scanned_ranges(requested: int):
    """The non-empty [start, end] ranges `search_order` walks for `requested`"""
    ranges = [
        [requested + 1, PORT_SEARCH_CEILING],
        [PORT_FALLBACK_FLOOR, min(requested, PORT_SEARCH_CEILING)],
    ]
    return [r for r in ranges if r[0] <= r[1]]


def resolve(requested: int, reserved_ports: Set[int], bindings: Set[int]) -> int:
    """Return `requested` if free, otherwise the next free port in search order"""
    in_use = set(reserved_ports) | set(bindings)
    if requested not in in_use:
        return requested

    logger.info("Requested host port in use, searching", requested_port=requested)
    for candidate in search_order(requested):
        if candidate not in in_use:
            logger.info(
                "Found available host port",
                requested_port=requested,
                allocated_port=candidate,
            )
            return candidate

    ranges = scanned_ranges(requested)
    checked = " and ".join(f"{start}-{end}" for start, end in ranges) or "none"
    raise PortExhaustedError(
        f"Port {requested} is in use and no alternative port is available",
        {
            "details": f"Checked ranges {checked}",
            "searched_ranges": ranges,
            "suggestion": f"sudo lsof -i :{requested} to see which service holds the port",
            "requested_port": requested,
            "conflict_type": "port_unavailable",
            "next_steps": [
                f"Stop the service using port {requested}",
                "Or choose a different port (e.g. 9001:80)",
                "Or leave the port empty to let the system pick one",
            ],
        },
    )
