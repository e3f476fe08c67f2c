"""
Models for the materialized state of a deployed stack.
"""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List


class StackStatus(str, Enum):
    """Lifecycle status of a stack."""

    NOT_DEPLOYED = "not_deployed"
    DEPLOYING = "deploying"
    RUNNING = "running"
    PARTIALLY_RUNNING = "partially_running"
    STOPPED = "stopped"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({StackStatus.RUNNING, StackStatus.PARTIALLY_RUNNING})


@dataclass
class StackRuntimeState:
    """
    What has actually been created on the runtime.

    ``containers`` lists container ids per service in creation order, so the
    position of an id is its replica index minus one.
    """

    containers: Dict[str, List[str]] = field(default_factory=dict)
    networks: Dict[str, str] = field(default_factory=dict)
    volumes: Dict[str, str] = field(default_factory=dict)
    status: StackStatus = StackStatus.NOT_DEPLOYED

    def reset(self) -> None:
        self.containers = {}
        self.networks = {}
        self.volumes = {}
        self.status = StackStatus.NOT_DEPLOYED

    def snapshot(self) -> "StackRuntimeState":
        return copy.deepcopy(self)

    def total_containers(self) -> int:
        return sum(len(ids) for ids in self.containers.values())

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_empty(self) -> bool:
        return not (self.total_containers() or self.networks or self.volumes)

    def track_container(self, service: str, container_id: str) -> None:
        self.containers.setdefault(service, []).append(container_id)


@dataclass
class SuppressedError:
    """A runtime failure that a best-effort operation absorbed."""

    operation: str
    resource: str
    message: str

    def __str__(self) -> str:
        return f"{self.operation} {self.resource}: {self.message}"


@dataclass
class OperationReport:
    """
    Outcome of a best-effort operation such as ``down``: what was removed and
    which errors were ignored along the way.
    """

    removed_containers: List[str] = field(default_factory=list)
    removed_networks: List[str] = field(default_factory=list)
    removed_volumes: List[str] = field(default_factory=list)
    suppressed: List[SuppressedError] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.suppressed

    def suppress(self, operation: str, resource: str, error: Exception) -> None:
        self.suppressed.append(SuppressedError(operation=operation, resource=resource, message=str(error)))

    def merge(self, other: "OperationReport") -> None:
        self.removed_containers.extend(other.removed_containers)
        self.removed_networks.extend(other.removed_networks)
        self.removed_volumes.extend(other.removed_volumes)
        self.suppressed.extend(other.suppressed)
