"""
Container Operations Module

Single-container operations behind the HTTP surface: status listing,
start, stop, remove, logs and exec. Identifiers may be a full id, a
12-character id prefix, or a container name.
"""

from typing import Optional, List

from docker.errors import NotFound

from config import LOG_TAIL_DEFAULT
from error_classifier import ErrorKind, RUNTIME_FAILURES, classify_exception, runtime_error
from models import ContainerSummary, ContainerState
from runtime_gateway import RuntimeGateway, runtime_session
from utils import (
    logger,
    log_container_operation,
    ClientInputError,
    ConflictError,
    ContainerException,
    DaemonUnreachableError,
    ResourceNotFoundError,
)


def find_container(
    containers: List[ContainerSummary], identifier: str
) -> Optional[ContainerSummary]:
    """First container whose id, id prefix or name matches"""
    for container in containers:
        if container.matches(identifier):
            return container
    return None


def _lookup(gateway: RuntimeGateway, identifier: str, suggestion: str = None):
    try:
        containers = gateway.list_containers(all=True)
    except RUNTIME_FAILURES as e:
        raise runtime_error("listing containers", e)

    container = find_container(containers, identifier)
    if container is None:
        details = {"suggestion": suggestion} if suggestion else None
        raise ResourceNotFoundError(f"Container not found: {identifier}", details)
    return container


def list_containers():
    """All containers, running or not"""
    with runtime_session() as gateway:
        try:
            containers = gateway.list_containers(all=True)
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing containers", e)

    if not containers:
        return {"message": "No containers found", "containers": []}
    return [c.to_dict() for c in containers]


def start_container(identifier: str):
    """Start a stopped container"""
    with runtime_session() as gateway:
        container = _lookup(
            gateway, identifier, "Check the container ID or container name"
        )

        try:
            info = gateway.inspect_container(container.id)
        except RUNTIME_FAILURES as e:
            raise runtime_error("inspecting container", e)

        if info.get("State", {}).get("Running"):
            raise ConflictError(
                f"Container '{container.name}' is already running",
                {
                    "details": "The container is already running, no need to start it",
                    "current_status": ContainerState.RUNNING.value,
                },
            )

        try:
            gateway.start_container(container.id)
        except RUNTIME_FAILURES as e:
            classified = classify_exception(e)
            log_container_operation("start", identifier, "failed", {"error": classified.raw_message})
            if classified.kind is ErrorKind.PORT_CONFLICT:
                port = classified.conflicting_port
                port_label = str(port) if port is not None else "unknown"
                raise ConflictError(
                    "Cannot start container due to a port conflict",
                    {
                        "details": f"Port {port_label} is used by another service",
                        "suggestion": f"sudo lsof -i :{port_label} to see which service holds the port",
                        "conflict_type": "port_conflict",
                        "port_in_conflict": port_label,
                        "recommended_actions": [
                            f"Stop the service using port {port_label}",
                            "Or use a different port mapping for the container",
                            "Or stop the other container using this port",
                        ],
                    },
                )
            if classified.kind is ErrorKind.DAEMON_UNREACHABLE:
                raise DaemonUnreachableError(f"Docker daemon is not accessible: {e}")
            raise ContainerException(
                f"Error starting container: {classified.raw_message}",
                {
                    "container_name": container.name,
                    "suggestion": "Check the container logs for details",
                },
            )

    log_container_operation("start", identifier, "success")
    return {
        "message": f"Container '{container.name}' started successfully",
        "container_id": container.short_id,
        "container_name": container.name,
    }


def stop_container(identifier: str):
    """Stop a running container"""
    with runtime_session() as gateway:
        container = _lookup(gateway, identifier)
        try:
            gateway.stop_container(container.id)
        except RUNTIME_FAILURES as e:
            raise runtime_error("stopping container", e)

    log_container_operation("stop", identifier, "success")
    return {"message": f"Container {identifier} stopped successfully"}


def remove_container(identifier: str):
    """Remove a container, stopping it first if it is running"""
    with runtime_session() as gateway:
        container = _lookup(gateway, identifier)
        try:
            gateway.remove_container(container.id, force=True)
        except RUNTIME_FAILURES as e:
            raise runtime_error("removing container", e)

    log_container_operation("remove", identifier, "success")
    return {"message": f"Container {identifier} removed successfully"}


def _parse_tail(tail: Optional[str]):
    tail = (tail or LOG_TAIL_DEFAULT).strip()
    if tail == "all":
        return tail
    try:
        lines = int(tail)
    except ValueError:
        raise ClientInputError(f"Invalid tail value: {tail}")
    if lines < 0:
        raise ClientInputError(f"Invalid tail value: {tail}")
    return lines


def get_container_logs(identifier: str, tail: Optional[str] = None):
    """Timestamped stdout and stderr of a container"""
    lines = _parse_tail(tail)
    with runtime_session() as gateway:
        try:
            logs = gateway.fetch_logs(identifier, tail=lines)
        except NotFound:
            raise ResourceNotFoundError(f"Container not found: {identifier}")
        except RUNTIME_FAILURES as e:
            raise runtime_error("getting logs", e)

    return {
        "logs": logs.decode("utf-8", errors="replace"),
        "container": identifier,
    }


def exec_in_container(identifier: str, command: str):
    """Run a shell command inside a container and collect its output"""
    if not command or not command.strip():
        raise ClientInputError("Command is required")

    logger.info("Executing command", container=identifier, command=command)
    with runtime_session() as gateway:
        try:
            output = gateway.exec_in_container(identifier, command)
        except NotFound:
            raise ResourceNotFoundError(f"Container not found: {identifier}")
        except RUNTIME_FAILURES as e:
            raise runtime_error("executing command", e)

    log_container_operation("exec", identifier, "success")
    return {
        "output": output.decode("utf-8", errors="replace"),
        "command": command,
        "container": identifier,
    }
