import threading

import pytest
from unittest.mock import MagicMock, Mock, patch
from docker.errors import APIError, DockerException
from requests.exceptions import ConnectionError as TransportConnectionError

from error_classifier import ErrorKind
from models import (
    ContainerState,
    ContainerSummary,
    PortBinding,
    ProvisionRequest,
    PublishedPort,
)
from provisioning import (
    ProvisionState,
    ProvisioningError,
    ProvisioningOrchestrator,
    provision_container,
)
from utils import ClientInputError, PortExhaustedError, RequestCancelled

CONTAINER_ID = "c" * 64
NAME_CONFLICT = (
    'Conflict. The container name "/web" is already in use by container "abc". '
    "You have to remove (or rename) that container to be able to reuse that name."
)
BIND_FAILURE = (
    "driver failed programming external connectivity on endpoint web: "
    "Error starting userland proxy: listen tcp4 0.0.0.0:9001: "
    "bind host port 0.0.0.0:9001:tcp: address already in use"
)


def api_error(status_code, explanation):
    return APIError(
        f"{status_code} Client Error", response=Mock(status_code=status_code), explanation=explanation
    )


def summary(name, host_port=None, state=ContainerState.RUNNING):
    ports = (PublishedPort(80, host_port),) if host_port else ()
    return ContainerSummary(
        id=f"{name:0<64}", names=(name,), image="nginx:latest", state=state, ports=ports
    )


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.list_images.return_value = [{"RepoTags": ["nginx:latest"]}]
    gw.list_containers.return_value = []
    gw.create_container.return_value = CONTAINER_ID
    return gw


def orchestrator(gateway, **kwargs):
    kwargs.setdefault("reserved_ports", {8080})
    kwargs.setdefault("default_image", "nginx:latest")
    return ProvisioningOrchestrator(gateway, **kwargs)


class TestImageResolution:
    """Image defaults and pulling"""

    def test_default_image_already_present_is_not_pulled(self, gateway):
        result = orchestrator(gateway).provision(ProvisionRequest())

        assert result.image == "nginx:latest"
        gateway.pull_image.assert_not_called()
        gateway.create_container.assert_called_once()

    def test_missing_image_is_pulled(self, gateway):
        orchestrator(gateway).provision(ProvisionRequest(image="redis:7"))
        gateway.pull_image.assert_called_once_with("redis:7")

    def test_pull_is_attempted_when_listing_fails(self, gateway):
        gateway.list_images.side_effect = DockerException("listing broke")
        orchestrator(gateway).provision(ProvisionRequest())
        gateway.pull_image.assert_called_once_with("nginx:latest")

    def test_pull_failure_is_image_resolution_failure(self, gateway):
        gateway.pull_image.side_effect = DockerException("manifest for nope:1 not found")

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest(image="nope:1"))

        error = exc_info.value
        assert error.classified.kind is ErrorKind.IMAGE_RESOLUTION_FAILED
        assert error.status_code == 500
        assert error.details["stage"] == ProvisionState.IMAGE_RESOLVING.value
        assert "manifest for nope:1 not found" in error.message
        gateway.create_container.assert_not_called()

    def test_registry_refusal_is_image_resolution_failure(self, gateway):
        gateway.pull_image.side_effect = api_error(
            500,
            'Get "https://registry-1.docker.io/v2/": dial tcp 1.2.3.4:443: connect: connection refused',
        )

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest(image="redis:7"))

        error = exc_info.value
        assert error.error_code == "IMAGE_RESOLUTION_FAILED"
        assert "Is Docker running?" not in error.details["suggestion"]


class TestPlanResolution:
    def test_reserved_port_is_moved_and_noted(self, gateway):
        binding = PortBinding(8080, "80")
        result = orchestrator(gateway).provision(ProvisionRequest(port="8080:80"), binding)

        assert result.port == "8081:80"
        assert result.original_port == "8080:80"
        body = result.to_dict()
        assert "8080:80" in body["note"] and "8081:80" in body["note"]
        assert gateway.create_container.call_args[0][2] == PortBinding(8081, "80")

    def test_ports_published_by_stopped_containers_are_skipped(self, gateway):
        gateway.list_containers.return_value = [
            summary("a", 8081),
            summary("b", 8082, state=ContainerState.EXITED),
        ]
        result = orchestrator(gateway).provision(ProvisionRequest(), PortBinding(8080, "80"))
        assert result.port == "8083:80"

    def test_free_port_is_kept_without_note(self, gateway):
        result = orchestrator(gateway).provision(ProvisionRequest(), PortBinding(3000, "80"))

        assert result.port == "3000:80"
        assert "note" not in result.to_dict()

    def test_no_port_means_no_binding(self, gateway):
        result = orchestrator(gateway).provision(ProvisionRequest(name="web"))

        assert result.port == "none"
        gateway.create_container.assert_called_once_with("nginx:latest", "web", None)

    def test_taken_name_is_suffixed_before_create(self, gateway):
        gateway.list_containers.return_value = [summary("web")]
        result = orchestrator(gateway).provision(ProvisionRequest(name="web"))

        assert result.name != "web"
        assert result.name.startswith("web-")

    def test_port_exhaustion_stops_before_create(self, gateway):
        gateway.list_containers.return_value = [
            summary(f"c{port}", port) for port in range(8081, 10000)
        ]
        orch = orchestrator(gateway)

        with pytest.raises(PortExhaustedError):
            orch.provision(ProvisionRequest(), PortBinding(8080, "80"))
        assert orch.state is ProvisionState.FAILED
        gateway.create_container.assert_not_called()


class TestCreateFailures:
    def test_name_conflict_is_retried_once(self, gateway):
        gateway.create_container.side_effect = [api_error(409, NAME_CONFLICT), CONTAINER_ID]

        result = orchestrator(gateway).provision(ProvisionRequest(name="web"))

        assert gateway.create_container.call_count == 2
        retried_name = gateway.create_container.call_args_list[1][0][1]
        assert retried_name.startswith("web-")
        assert result.name == retried_name
        assert result.id == CONTAINER_ID

    def test_second_name_conflict_is_surfaced(self, gateway):
        gateway.create_container.side_effect = [
            api_error(409, NAME_CONFLICT),
            api_error(409, NAME_CONFLICT),
        ]

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest(name="web"))

        error = exc_info.value
        assert gateway.create_container.call_count == 2
        assert error.status_code == 409
        assert error.error_code == "NAME_CONFLICT"
        assert error.details["conflict_type"] == "name_conflict"

    def test_port_conflict_on_create_is_not_retried(self, gateway):
        gateway.create_container.side_effect = api_error(500, BIND_FAILURE)

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest(), PortBinding(9001, "80"))

        error = exc_info.value
        assert gateway.create_container.call_count == 1
        assert error.status_code == 409
        assert error.details["conflict_type"] == "system_port_conflict"
        assert error.details["port_in_use"] == "9001"
        assert "9001:80" in error.details["solution_options"][2]

    def test_generic_create_failure(self, gateway):
        gateway.create_container.side_effect = DockerException("no space left on device")

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest())

        error = exc_info.value
        assert error.status_code == 500
        assert error.error_code == "RUNTIME_ERROR"
        assert error.message == "Error creating container: no space left on device"
        assert error.details["stage"] == ProvisionState.CREATING.value

    def test_daemon_lost_mid_workflow(self, gateway):
        gateway.list_containers.side_effect = TransportConnectionError("connection refused")

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest())

        error = exc_info.value
        assert error.error_code == "DAEMON_UNREACHABLE"
        assert "Is Docker running?" in error.details["suggestion"]


class TestStartFailures:
    def test_port_conflict_on_start_reports_created_container(self, gateway):
        gateway.start_container.side_effect = api_error(500, BIND_FAILURE)

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest(), PortBinding(9001, "80"))

        error = exc_info.value
        assert error.status_code == 409
        assert error.details["container_id"] == CONTAINER_ID
        assert error.details["conflict_type"] == "port_binding_failed"
        assert error.details["port_in_conflict"] == "9001"
        assert error.details["stage"] == ProvisionState.STARTING.value
        gateway.create_container.assert_called_once()

    def test_address_in_use_on_start(self, gateway):
        gateway.start_container.side_effect = api_error(
            500, "listen tcp 0.0.0.0:3000: address already in use"
        )

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest(), PortBinding(3000, "80"))

        assert exc_info.value.details["conflict_type"] == "address_in_use"
        assert exc_info.value.details["port_in_conflict"] == "3000"

    def test_generic_start_failure(self, gateway):
        gateway.start_container.side_effect = DockerException("exec format error")

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator(gateway).provision(ProvisionRequest())

        error = exc_info.value
        assert error.status_code == 500
        assert error.error_code == "START_FAILED"
        assert error.details["details"] == "exec format error"
        assert error.details["container_id"] == CONTAINER_ID


class TestCancellation:
    def test_cancelled_request_creates_nothing(self, gateway):
        event = threading.Event()
        event.set()
        orch = orchestrator(gateway, cancel_event=event)

        with pytest.raises(RequestCancelled):
            orch.provision(ProvisionRequest(image="redis:7"))

        assert orch.state is ProvisionState.FAILED
        gateway.pull_image.assert_not_called()
        gateway.create_container.assert_not_called()

    def test_cancel_after_create_leaves_container_stopped(self, gateway):
        event = threading.Event()

        def create(*args):
            event.set()
            return CONTAINER_ID

        gateway.create_container.side_effect = create

        with pytest.raises(RequestCancelled):
            orchestrator(gateway, cancel_event=event).provision(ProvisionRequest())
        gateway.start_container.assert_not_called()


class TestProvisionContainer:
    def test_malformed_port_never_reaches_daemon(self, docker_client):
        with pytest.raises(ClientInputError):
            provision_container(ProvisionRequest(port="abc"))
        docker_client.from_env.assert_not_called()

    def test_full_workflow_over_sdk(self, docker_client):
        docker_client.api.images.return_value = [{"RepoTags": ["nginx:latest"]}]

        with patch("provisioning.RESERVED_PORTS", frozenset({8080})):
            result = provision_container(ProvisionRequest(name="web", port="8080:80"))

        assert result.port == "8081:80"
        docker_client.containers.create.assert_called_once_with(
            "nginx:latest", name="web", tty=True, ports={"80/tcp": ("0.0.0.0", 8081)}
        )
        docker_client.api.start.assert_called_once_with(docker_client.containers.create.return_value.id)
        docker_client.api.pull.assert_not_called()
        docker_client.close.assert_called_once()
