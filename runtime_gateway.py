"""
Runtime Gateway Module

Typed access to the Docker daemon. A gateway wraps one SDK client for the
lifetime of a single request; `runtime_session()` opens it, checks the daemon
answers, and always closes it again.
"""

from contextlib import contextmanager
from typing import List, Dict, Any, Optional, Union

import docker
from docker.errors import DockerException
from requests.exceptions import RequestException

from config import DOCKER_TIMEOUT
from models import ContainerSummary, PortBinding
from utils import logger, DaemonUnreachableError


class RuntimeGateway:
    """Thin typed wrapper over the docker SDK client"""

    def __init__(self, client):
        self.client = client

    def ping(self):
        try:
            self.client.ping()
        except (DockerException, RequestException) as e:
            raise DaemonUnreachableError(f"Docker daemon is not accessible: {e}")

    def close(self):
        self.client.close()

    # Containers

    def list_containers(self, all: bool = True) -> List[ContainerSummary]:
        return [
            ContainerSummary.from_api(raw)
            for raw in self.client.api.containers(all=all)
        ]

    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        return self.client.api.inspect_container(container_id)

    def create_container(
        self, image: str, name: str, port_binding: Optional[PortBinding] = None
    ) -> str:
        ports = {}
        if port_binding:
            ports[f"{port_binding.container_port}/tcp"] = (
                "0.0.0.0",
                port_binding.host_port,
            )
        container = self.client.containers.create(
            image, name=name, tty=True, ports=ports or None
        )
        return container.id

    def start_container(self, container_id: str):
        self.client.api.start(container_id)

    def stop_container(self, container_id: str, timeout: Optional[int] = None):
        self.client.api.stop(container_id, timeout=timeout)

    def remove_container(self, container_id: str, force: bool = True):
        self.client.api.remove_container(container_id, force=force)

    def restart_container(self, container_id: str, timeout: Optional[int] = None):
        self.client.api.restart(container_id, timeout=timeout)

    def exec_in_container(self, container_id: str, command: str) -> bytes:
        exec_id = self.client.api.exec_create(
            container_id, ["sh", "-c", command], stdout=True, stderr=True
        )["Id"]
        return self.client.api.exec_start(exec_id)

    def fetch_logs(self, container_id: str, tail: Union[int, str] = "all") -> bytes:
        return self.client.api.logs(
            container_id, stdout=True, stderr=True, tail=tail, timestamps=True
        )

    # Images

    def list_images(self) -> List[Dict[str, Any]]:
        return self.client.api.images()

    def pull_image(self, ref: str):
        """Pull an image, draining the progress stream to the end"""
        for chunk in self.client.api.pull(ref, stream=True, decode=True):
            # The daemon reports some failures inside the stream itself
            if isinstance(chunk, dict) and chunk.get("error"):
                raise DockerException(chunk["error"])

    def remove_image(self, ref: str, force: bool = True):
        self.client.api.remove_image(ref, force=force)

    def search_images(self, term: str, limit: int) -> List[Dict[str, Any]]:
        return self.client.api.search(term, limit=limit)

    # Networks, volumes, housekeeping

    def list_networks(self) -> List[Dict[str, Any]]:
        return self.client.api.networks()

    def list_volumes(self) -> List[Dict[str, Any]]:
        return self.client.api.volumes().get("Volumes") or []

    def prune(self) -> Dict[str, Dict[str, Any]]:
        return {
            "containers": self.client.api.prune_containers(),
            "images": self.client.api.prune_images(filters={"dangling": True}),
            "networks": self.client.api.prune_networks(),
            "build_cache": self.client.api.prune_builds(),
        }


def connect() -> RuntimeGateway:
    """Open an SDK client from the environment (DOCKER_HOST etc.)"""
    try:
        client = docker.from_env(timeout=DOCKER_TIMEOUT)
    except (DockerException, RequestException) as e:
        logger.error("Cannot connect to Docker daemon", error=str(e))
        raise DaemonUnreachableError(
            f"Cannot connect to Docker daemon. Is Docker running? {e}"
        )
    return RuntimeGateway(client)


@contextmanager
def runtime_session():
    """Connect, verify the daemon answers, and release on every exit path"""
    gateway = connect()
    try:
        gateway.ping()
        yield gateway
    finally:
        gateway.close()
