from dataclasses import dataclass, field
from enum import Enum
from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Tuple


class ProvisionRequest(BaseModel):
    name: Optional[str] = None
    image: Optional[str] = None
    port: Optional[str] = None  # e.g., "8080:80"


class ImageRequest(BaseModel):
    name: Optional[str] = None
    tag: Optional[str] = None


class ExecRequest(BaseModel):
    command: str


class BulkRequest(BaseModel):
    containers: List[str]


class ContainerState(str, Enum):
    RUNNING = "running"
    EXITED = "exited"
    CREATED = "created"
    PAUSED = "paused"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ContainerState":
        try:
            return cls((raw or "").lower())
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class PublishedPort:
    private_port: int
    public_port: Optional[int]
    protocol: str = "tcp"
    host_ip: Optional[str] = None


@dataclass(frozen=True)
class ContainerSummary:
    """A container as listed by the daemon. Read per request, never cached."""

    id: str
    names: Tuple[str, ...]
    image: str
    state: ContainerState
    status: str = ""
    ports: Tuple[PublishedPort, ...] = ()

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "ContainerSummary":
        ports = tuple(
            PublishedPort(
                private_port=p.get("PrivatePort"),
                public_port=p.get("PublicPort") or None,
                protocol=p.get("Type", "tcp"),
                host_ip=p.get("IP"),
            )
            for p in raw.get("Ports") or []
        )
        return cls(
            id=raw["Id"],
            # The daemon prefixes names with "/"
            names=tuple(n.lstrip("/") for n in raw.get("Names") or []),
            image=raw.get("Image", ""),
            state=ContainerState.parse(raw.get("State")),
            status=raw.get("Status", ""),
            ports=ports,
        )

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def name(self) -> str:
        return self.names[0] if self.names else ""

    @property
    def published_host_ports(self) -> List[int]:
        return [int(p.public_port) for p in self.ports if p.public_port]

    def matches(self, identifier: str) -> bool:
        """True for the full id, the 12-character prefix or any assigned name"""
        identifier = identifier.lstrip("/")
        return (
            self.id == identifier
            or self.short_id == identifier
            or identifier in self.names
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "short_id": self.short_id,
            "name": self.name,
            "names": list(self.names),
            "image": self.image,
            "state": self.state.value,
            "status": self.status,
            "ports": [
                {
                    "private_port": p.private_port,
                    "public_port": p.public_port,
                    "type": p.protocol,
                    "ip": p.host_ip,
                }
                for p in self.ports
            ],
        }


@dataclass(frozen=True)
class PortBinding:
    host_port: int
    container_port: str

    def __str__(self) -> str:
        return f"{self.host_port}:{self.container_port}"


@dataclass(frozen=True)
class ResolvedPlan:
    """What will be created. Replaced, never mutated, when a retry renames it."""

    image_ref: str
    container_name: str
    port_binding: Optional[PortBinding] = None

    @property
    def port_mapping(self) -> str:
        return str(self.port_binding) if self.port_binding else "none"


@dataclass(frozen=True)
class ProvisionResult:
    id: str
    name: str
    image: str
    port: str
    original_port: Optional[str] = None

    @property
    def port_changed(self) -> bool:
        return self.original_port is not None

    def to_dict(self) -> Dict[str, Any]:
        response = {
            "message": "Container created and started successfully",
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "port": self.port,
        }
        if self.port_changed:
            response["note"] = (
                f"Port was automatically changed from {self.original_port} "
                f"to {self.port} due to conflict"
            )
            response["original_port"] = self.original_port
        return response


class BulkAction(str, Enum):
    START = "start"
    STOP = "stop"
    REMOVE = "remove"
    RESTART = "restart"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class BulkOutcome:
    target_id: str
    status: OutcomeStatus
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"status": self.status.value}
        if self.message is not None:
            result["message"] = self.message
        return result


@dataclass(frozen=True)
class BulkReport:
    action: str
    outcomes: Tuple[BulkOutcome, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.SUCCESS)

    @property
    def error_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "results": {o.target_id: o.to_dict() for o in self.outcomes},
            "summary": {
                "total": self.total,
                "success": self.success_count,
                "errors": self.error_count,
            },
        }
