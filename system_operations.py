"""
System Operations Module

Daemon-wide views and housekeeping: statistics, cleanup, networks, volumes
and the health probe.
"""

from collections import Counter
from datetime import datetime
from typing import Iterable, Dict, Any

from config import SERVICE_NAME
from error_classifier import RUNTIME_FAILURES, runtime_error
from models import ContainerState, ContainerSummary
from runtime_gateway import runtime_session
from utils import (
    logger,
    log_container_operation,
    host_snapshot,
    DockerManagerException,
    RUNNING_CONTAINERS,
)

STATE_BUCKETS = {
    ContainerState.RUNNING: "running",
    ContainerState.EXITED: "stopped",
    ContainerState.CREATED: "stopped",
    ContainerState.PAUSED: "paused",
}


def count_container_states(containers: Iterable[ContainerSummary]) -> Dict[str, int]:
    """Fold containers into {total, running, stopped, paused}"""
    containers = list(containers)
    buckets = Counter(
        STATE_BUCKETS[c.state] for c in containers if c.state in STATE_BUCKETS
    )
    return {
        "total": len(containers),
        "running": buckets["running"],
        "stopped": buckets["stopped"],
        "paused": buckets["paused"],
    }


def get_stats():
    with runtime_session() as gateway:
        try:
            containers = gateway.list_containers(all=True)
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing containers", e)
        try:
            images = gateway.list_images()
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing images", e)

    counts = count_container_states(containers)
    RUNNING_CONTAINERS.set(counts["running"])
    return {
        "containers": counts,
        "images": {"total": len(images)},
        "system": host_snapshot(),
    }


def _format_bytes(size: int) -> str:
    size = float(size or 0)
    for unit in ("B", "kB", "MB", "GB"):
        if size < 1000:
            return f"{size:.1f}{unit}" if unit != "B" else f"{int(size)}B"
        size /= 1000
    return f"{size:.1f}TB"


def render_prune_report(report: Dict[str, Dict[str, Any]]) -> str:
    """Text summary in the spirit of `docker system prune` output"""
    lines = []
    reclaimed = 0

    containers = report.get("containers") or {}
    if containers.get("ContainersDeleted"):
        lines.append("Deleted Containers:")
        lines.extend(containers["ContainersDeleted"])
        lines.append("")
    reclaimed += containers.get("SpaceReclaimed") or 0

    networks = report.get("networks") or {}
    if networks.get("NetworksDeleted"):
        lines.append("Deleted Networks:")
        lines.extend(networks["NetworksDeleted"])
        lines.append("")

    images = report.get("images") or {}
    if images.get("ImagesDeleted"):
        lines.append("Deleted Images:")
        for entry in images["ImagesDeleted"]:
            for key, value in entry.items():
                lines.append(f"{key.lower()}: {value}")
        lines.append("")
    reclaimed += images.get("SpaceReclaimed") or 0

    build_cache = report.get("build_cache") or {}
    if build_cache.get("CachesDeleted"):
        lines.append("Deleted build cache objects:")
        lines.extend(build_cache["CachesDeleted"])
        lines.append("")
    reclaimed += build_cache.get("SpaceReclaimed") or 0

    lines.append(f"Total reclaimed space: {_format_bytes(reclaimed)}")
    return "\n".join(lines)


def cleanup_system():
    """Prune stopped containers, dangling images, unused networks and build cache"""
    with runtime_session() as gateway:
        try:
            report = gateway.prune()
        except RUNTIME_FAILURES as e:
            log_container_operation("cleanup", "system", "failed", {"error": str(e)})
            raise runtime_error("running cleanup", e)

    log_container_operation("cleanup", "system", "success")
    return {"message": "System cleanup completed", "output": render_prune_report(report)}


def list_networks():
    with runtime_session() as gateway:
        try:
            return gateway.list_networks()
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing networks", e)


def list_volumes():
    with runtime_session() as gateway:
        try:
            return gateway.list_volumes()
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing volumes", e)


def health_check() -> Dict[str, Any]:
    """Daemon reachability plus a host snapshot; never raises"""
    docker_status = "healthy"
    try:
        with runtime_session():
            pass
    except DockerManagerException as e:
        logger.warning("Docker health check failed", error=e.message)
        docker_status = "unreachable"

    try:
        system = host_snapshot()
    except OSError as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "service": SERVICE_NAME,
            "timestamp": datetime.utcnow().isoformat(),
            "services": {"docker": docker_status},
            "error": str(e),
        }

    return {
        "status": "healthy" if docker_status == "healthy" else "degraded",
        "service": SERVICE_NAME,
        "timestamp": datetime.utcnow().isoformat(),
        "services": {"docker": docker_status},
        "system": system,
    }
