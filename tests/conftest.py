import pytest
from unittest.mock import MagicMock, patch

from server import limiter

CONTAINER_ID = "f" * 64


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Each test starts with empty rate limit counters"""
    limiter.reset()
    yield


@pytest.fixture
def docker_client():
    """A stand-in docker SDK client returned by docker.from_env"""
    client = MagicMock()
    client.ping.return_value = True
    client.api.containers.return_value = []
    client.api.images.return_value = []
    client.api.pull.return_value = iter([{"status": "Download complete"}])
    client.containers.create.return_value = MagicMock(id=CONTAINER_ID)

    with patch("runtime_gateway.docker.from_env", return_value=client) as from_env:
        client.from_env = from_env
        yield client


@pytest.fixture
def raw_container():
    """Build a container record shaped like the daemon's list endpoint"""

    def build(container_id, name, state="running", public_ports=()):
        return {
            "Id": container_id,
            "Names": [f"/{name}"],
            "Image": "nginx:latest",
            "State": state,
            "Status": "Up 2 minutes" if state == "running" else "Exited (0)",
            "Ports": [
                {"IP": "0.0.0.0", "PrivatePort": 80, "PublicPort": port, "Type": "tcp"}
                for port in public_ports
            ],
        }

    return build
