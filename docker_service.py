"""
Docker Service Module - Main API Interface

Single import point for the Docker manager operations. server.py only
talks to this module; the workflows live in the modules below.

Structure:
- runtime_gateway.py: Per-request daemon sessions and typed SDK calls
- provisioning.py: Container creation workflow (image, name, port, create, start)
- port_allocator.py / name_resolver.py: Conflict-free port and name choices
- error_classifier.py: Typed classification of daemon failures
- bulk_executor.py: One lifecycle action across many containers
- container_operations.py: Single-container operations
- image_operations.py: Image listing, pulls, removal and search
- system_operations.py: Stats, cleanup, networks, volumes, health
"""

from provisioning import provision_container
from bulk_executor import run_bulk_action
from container_operations import (
    list_containers,
    start_container,
    stop_container,
    remove_container,
    get_container_logs,
    exec_in_container,
)
from image_operations import (
    list_images,
    pull_image,
    remove_image,
    search_images,
)
from system_operations import (
    get_stats,
    cleanup_system,
    list_networks,
    list_volumes,
    health_check,
)

# Public API exports - these are the functions that should be imported by other modules
__all__ = [
    # Provisioning
    "provision_container",
    # Bulk lifecycle
    "run_bulk_action",
    # Container operations
    "list_containers",
    "start_container",
    "stop_container",
    "remove_container",
    "get_container_logs",
    "exec_in_container",
    # Images
    "list_images",
    "pull_image",
    "remove_image",
    "search_images",
    # System
    "get_stats",
    "cleanup_system",
    "list_networks",
    "list_volumes",
    "health_check",
]
