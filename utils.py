import logging
import os
import sys
import structlog
from datetime import datetime
from typing import Optional, Dict, Any
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
)
from fastapi import Request
from config import LOG_LEVEL

logging.basicConfig(format="%(message)s", stream=sys.stdout, level=LOG_LEVEL)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency")
RUNNING_CONTAINERS = Gauge("running_containers", "Number of running containers")
CONTAINER_OPERATIONS = Counter(
    "container_operations_total", "Container operations", ["operation", "status"]
)
RUNTIME_ERRORS = Counter(
    "runtime_errors_total", "Classified runtime failures", ["kind"]
)
PROVISION_RETRIES = Counter(
    "provision_retries_total", "Container creations retried after a conflict"
)


def log_request(request: Request, response_time: float, status_code: int):
    """Log request details with structured logging"""
    logger.info(
        "HTTP request",
        method=request.method,
        url=str(request.url),
        status_code=status_code,
        response_time=response_time,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def log_container_operation(
    operation: str, target: str, status: str, details: Dict[str, Any] = None
):
    """Log container operations with structured logging"""
    logger.info(
        "Container operation",
        operation=operation,
        target=target,
        status=status,
        details=details or {},
    )
    CONTAINER_OPERATIONS.labels(operation=operation, status=status).inc()


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()


def host_snapshot() -> Dict[str, Any]:
    """Collect a point-in-time view of host memory, disk and CPU"""
    disk_usage = os.statvfs("/")
    disk_total = disk_usage.f_frsize * disk_usage.f_blocks
    disk_free = disk_usage.f_frsize * disk_usage.f_bavail
    disk_used = disk_total - disk_free

    memory = {"total": 0, "used": 0, "free": 0, "percent": 0.0}
    try:
        with open("/proc/meminfo", "r") as f:
            meminfo = dict(
                line.split(":", 1) for line in f.read().split("\n") if ":" in line
            )
        total_mem = int(meminfo["MemTotal"].split()[0]) * 1024
        free_mem = int(meminfo["MemAvailable"].split()[0]) * 1024
        memory = {
            "total": total_mem,
            "used": total_mem - free_mem,
            "free": free_mem,
            "percent": round((total_mem - free_mem) / total_mem * 100, 2),
        }
    except (OSError, KeyError, ValueError) as e:
        logger.warning("Could not read memory information", error=str(e))

    return {
        "timestamp": datetime.utcnow().isoformat(),
        "memory": memory,
        "disk": {
            "total": disk_total,
            "used": disk_used,
            "free": disk_free,
            "percent": round(disk_used / disk_total * 100, 2) if disk_total else 0.0,
        },
        "cpu": {"cores": os.cpu_count()},
    }


# Error handling utilities
class DockerManagerException(Exception):
    """Base exception for the Docker manager"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload = {"error": self.message, "error_code": self.error_code}
        payload.update(self.details)
        return payload


class ClientInputError(DockerManagerException):
    """Malformed or missing request input; raised before any daemon call"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "BAD_REQUEST", 400, details)


class DaemonUnreachableError(DockerManagerException):
    """The Docker daemon could not be contacted"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details.setdefault(
            "suggestion", "Is Docker running? Start the Docker service and retry"
        )
        super().__init__(message, "DAEMON_UNREACHABLE", 500, details)


class ResourceNotFoundError(DockerManagerException):
    """Unknown container or image identifier"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", 404, details)


class ConflictError(DockerManagerException):
    """Name or port conflict reported by, or predicted for, the daemon"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "CONFLICT",
    ):
        super().__init__(message, error_code, 409, details)


class PortExhaustedError(ConflictError):
    """No free host port left in the search ranges"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, "PORT_EXHAUSTED")


class ContainerException(DockerManagerException):
    """Exception for container-related errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message, "CONTAINER_ERROR", status_code, details)


class RequestCancelled(DockerManagerException):
    """The client went away before the workflow finished"""

    def __init__(self, message: str = "Request cancelled by client"):
        super().__init__(message, "CLIENT_CLOSED_REQUEST", 499)
