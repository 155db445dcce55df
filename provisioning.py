"""
Provisioning Module

Turns a loose creation request into a running container:

    image -> name -> port -> create -> start

Every step reads fresh state from the daemon. Name and port choices are
best-effort; when the daemon still reports a conflict the failure is
classified and either retried once (name) or reported with remediation
(port).
"""

import threading
from dataclasses import replace
from enum import Enum
from typing import Optional, Tuple, Dict, Any

import name_resolver
import port_allocator
from config import DEFAULT_IMAGE, RESERVED_PORTS
from error_classifier import (
    ClassifiedError,
    ErrorClassifier,
    ErrorKind,
    RUNTIME_FAILURES,
    default_classifier,
)
from models import PortBinding, ProvisionRequest, ProvisionResult, ResolvedPlan
from runtime_gateway import RuntimeGateway, runtime_session
from utils import (
    logger,
    log_container_operation,
    DockerManagerException,
    RequestCancelled,
    PROVISION_RETRIES,
)


class ProvisionState(str, Enum):
    IDLE = "idle"
    IMAGE_RESOLVING = "image_resolving"
    NAME_RESOLVING = "name_resolving"
    PORT_RESOLVING = "port_resolving"
    CREATING = "creating"
    STARTING = "starting"
    DONE = "done"
    FAILED = "failed"


KIND_RESPONSES = {
    ErrorKind.DAEMON_UNREACHABLE: (500, "DAEMON_UNREACHABLE"),
    ErrorKind.IMAGE_RESOLUTION_FAILED: (500, "IMAGE_RESOLUTION_FAILED"),
    ErrorKind.NAME_CONFLICT: (409, "NAME_CONFLICT"),
    ErrorKind.PORT_CONFLICT: (409, "PORT_CONFLICT"),
    ErrorKind.START_FAILED: (500, "START_FAILED"),
    ErrorKind.GENERIC: (500, "RUNTIME_ERROR"),
}


class ProvisioningError(DockerManagerException):
    """A classified failure, tagged with the step it happened in"""

    def __init__(
        self,
        message: str,
        classified: ClassifiedError,
        state: ProvisionState,
        details: Optional[Dict[str, Any]] = None,
    ):
        status_code, error_code = KIND_RESPONSES[classified.kind]
        self.classified = classified
        self.state = state
        super().__init__(message, error_code, status_code, details)


def _port_label(classified: ClassifiedError) -> str:
    if classified.conflicting_port is None:
        return "unknown"
    return str(classified.conflicting_port)


class ProvisioningOrchestrator:
    """Drives one creation request through the provisioning states"""

    def __init__(
        self,
        gateway: RuntimeGateway,
        reserved_ports=None,
        default_image: Optional[str] = None,
        classifier: ErrorClassifier = default_classifier,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.gateway = gateway
        self.reserved_ports = set(RESERVED_PORTS if reserved_ports is None else reserved_ports)
        self.default_image = default_image or DEFAULT_IMAGE
        self.classifier = classifier
        self.cancel_event = cancel_event
        self.state = ProvisionState.IDLE

    def provision(
        self, request: ProvisionRequest, binding: Optional[PortBinding] = None
    ) -> ProvisionResult:
        """Run the full workflow. `binding` is the already-parsed port spec."""
        image_ref = self._resolve_image(request.image)
        container_name = self._resolve_name(request.name)
        final_binding = self._resolve_port(binding)

        plan = ResolvedPlan(
            image_ref=image_ref,
            container_name=container_name,
            port_binding=final_binding,
        )
        container_id, plan = self._create(plan)
        self._start(container_id, plan)

        self._transition(ProvisionState.DONE)
        original_port = None
        if binding and final_binding.host_port != binding.host_port:
            original_port = str(binding)

        result = ProvisionResult(
            id=container_id,
            name=plan.container_name,
            image=plan.image_ref,
            port=plan.port_mapping,
            original_port=original_port,
        )
        log_container_operation(
            "create", plan.container_name, "success", {"id": container_id, "port": result.port}
        )
        return result

    # Steps

    def _resolve_image(self, requested: Optional[str]) -> str:
        self._transition(ProvisionState.IMAGE_RESOLVING)
        image_ref = (requested or "").strip() or self.default_image

        self._checkpoint()
        try:
            images = self.gateway.list_images()
        except RUNTIME_FAILURES as e:
            logger.warning("Could not list local images, pulling", image=image_ref, error=str(e))
            images = []

        if any(image_ref in (img.get("RepoTags") or []) for img in images):
            logger.info("Image already present locally", image=image_ref)
            return image_ref

        self._checkpoint()
        logger.info("Pulling image", image=image_ref)
        try:
            self.gateway.pull_image(image_ref)
        except RUNTIME_FAILURES as e:
            classified = self.classifier.classify_exception(e)
            if classified.kind is ErrorKind.GENERIC:
                classified = classified.with_kind(ErrorKind.IMAGE_RESOLUTION_FAILED)
            raise self._fail(
                classified,
                f"Error pulling image: {classified.raw_message}",
                {"image": image_ref, "suggestion": "Check the image name and tag, or your registry access"},
            )
        logger.info("Image pulled", image=image_ref)
        return image_ref

    def _resolve_name(self, requested: Optional[str]) -> str:
        self._transition(ProvisionState.NAME_RESOLVING)
        containers = self._list_containers()
        existing = {name for c in containers for name in c.names}
        return name_resolver.resolve(requested, existing)

    def _resolve_port(self, binding: Optional[PortBinding]) -> Optional[PortBinding]:
        if binding is None:
            return None

        self._transition(ProvisionState.PORT_RESOLVING)
        containers = self._list_containers()
        try:
            host_port = port_allocator.resolve(
                binding.host_port,
                self.reserved_ports,
                port_allocator.active_bindings(containers),
            )
        except DockerManagerException:
            self._transition(ProvisionState.FAILED)
            raise
        return PortBinding(host_port=host_port, container_port=binding.container_port)

    def _create(self, plan: ResolvedPlan) -> Tuple[str, ResolvedPlan]:
        self._transition(ProvisionState.CREATING)
        self._checkpoint()
        try:
            return self._issue_create(plan), plan
        except RUNTIME_FAILURES as e:
            classified = self.classifier.classify_exception(e)

        if classified.kind is ErrorKind.NAME_CONFLICT:
            plan = replace(plan, container_name=name_resolver.disambiguate(plan.container_name))
            PROVISION_RETRIES.inc()
            logger.info("Retrying create with unique name", name=plan.container_name)
            try:
                return self._issue_create(plan), plan
            except RUNTIME_FAILURES as e:
                classified = self.classifier.classify_exception(e)

        raise self._creation_failure(classified, plan)

    def _start(self, container_id: str, plan: ResolvedPlan):
        self._transition(ProvisionState.STARTING)
        try:
            self._checkpoint()
        except RequestCancelled:
            logger.warning("Created container left stopped", container_id=container_id)
            raise

        try:
            self.gateway.start_container(container_id)
        except RUNTIME_FAILURES as e:
            classified = self.classifier.classify_exception(e)
            raise self._start_failure(classified, container_id)

    # Helpers

    def _issue_create(self, plan: ResolvedPlan) -> str:
        logger.info(
            "Creating container",
            name=plan.container_name,
            image=plan.image_ref,
            port=plan.port_mapping,
        )
        container_id = self.gateway.create_container(
            plan.image_ref, plan.container_name, plan.port_binding
        )
        logger.info("Container created", container_id=container_id)
        return container_id

    def _list_containers(self):
        self._checkpoint()
        try:
            return self.gateway.list_containers(all=True)
        except RUNTIME_FAILURES as e:
            classified = self.classifier.classify_exception(e)
            raise self._fail(classified, f"Error listing containers: {classified.raw_message}")

    def _creation_failure(self, classified: ClassifiedError, plan: ResolvedPlan):
        if classified.kind is ErrorKind.PORT_CONFLICT:
            port = _port_label(classified)
            container_port = (
                plan.port_binding.container_port if plan.port_binding else "80"
            )
            return self._fail(
                classified,
                f"Cannot create container: port {port} is used by another service",
                {
                    "details": "This may be a system service rather than a Docker container",
                    "suggestion": f"sudo lsof -i :{port} or sudo netstat -tulpn | grep :{port}",
                    "conflict_type": "system_port_conflict",
                    "port_in_use": port,
                    "solution_options": [
                        f"Stop the service using port {port}",
                        "Use a different port for the container",
                        f"Use a different port mapping (e.g. 9001:{container_port})",
                    ],
                },
            )
        if classified.kind is ErrorKind.NAME_CONFLICT:
            return self._fail(
                classified,
                f"Container name conflict: {classified.raw_message}",
                {
                    "conflict_type": "name_conflict",
                    "name": plan.container_name,
                    "suggestion": "Choose another name or leave it empty to generate one",
                },
            )
        return self._fail(
            classified,
            f"Error creating container: {classified.raw_message}",
            {"suggestion": "Inspect the daemon logs for details"},
        )

    def _start_failure(self, classified: ClassifiedError, container_id: str):
        if classified.kind is ErrorKind.PORT_CONFLICT:
            port = _port_label(classified)
            conflict_type = (
                "address_in_use"
                if "address already in use" in classified.raw_message
                and "bind host port" not in classified.raw_message
                else "port_binding_failed"
            )
            return self._fail(
                classified,
                "Cannot start container due to a port conflict",
                {
                    "details": f"Port {port} is used by another service on this host",
                    "suggestion": f"sudo lsof -i :{port} to see which service holds the port",
                    "container_id": container_id,
                    "conflict_type": conflict_type,
                    "port_in_conflict": port,
                    "note": "The container was created but is stopped. You can remove it from the container list.",
                    "recommended_actions": [
                        f"Check which service uses the port: sudo lsof -i :{port}",
                        "Stop that service if it is not needed",
                        "Or remove this container and create it again with another port",
                        "Or use a different port mapping",
                    ],
                },
            )
        if classified.kind is ErrorKind.GENERIC:
            classified = classified.with_kind(ErrorKind.START_FAILED)
        return self._fail(
            classified,
            "Error starting container",
            {
                "details": classified.raw_message,
                "container_id": container_id,
                "suggestion": "Check the container logs for details",
            },
        )

    def _fail(
        self,
        classified: ClassifiedError,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> ProvisioningError:
        failed_in = self.state
        self._transition(ProvisionState.FAILED)
        details = dict(details or {})
        details.setdefault("stage", failed_in.value)
        if classified.kind is ErrorKind.DAEMON_UNREACHABLE:
            details["suggestion"] = "Is Docker running? Start the Docker service and retry"
        return ProvisioningError(message, classified, failed_in, details)

    def _transition(self, state: ProvisionState):
        logger.debug("Provisioning state", previous=self.state.value, state=state.value)
        self.state = state

    def _checkpoint(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.info("Provisioning cancelled", state=self.state.value)
            self._transition(ProvisionState.FAILED)
            raise RequestCancelled()


def provision_container(
    request: ProvisionRequest, cancel_event: Optional[threading.Event] = None
) -> ProvisionResult:
    """Validate the request, then provision over a fresh daemon session"""
    binding = port_allocator.parse_port_spec(request.port)
    with runtime_session() as gateway:
        orchestrator = ProvisioningOrchestrator(gateway, cancel_event=cancel_event)
        return orchestrator.provision(request, binding)
