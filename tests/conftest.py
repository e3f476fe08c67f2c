"""
Shared fixtures: an in-memory runtime client that records every call and can
be told to fail specific operations.
"""
import itertools
from typing import Any, Dict, List, Optional

import pytest

from stackpilot.errors import ResourceExistsError, ResourceNotFoundError, RuntimeUnavailableError
from stackpilot.MANAGERS.stack_orchestrator import Stack
from stackpilot.MODELS.service_definition import ServiceDefinition
from stackpilot.RUNTIME.runtime_client import (
    ContainerInfo,
    ContainerSpec,
    LogOptions,
    NetworkInfo,
    RuntimeClient,
    VolumeInfo,
)


def _matches(labels: Dict[str, str], wanted: Dict[str, str]) -> bool:
    return all(labels.get(k) == v for k, v in wanted.items())


class FakeRuntimeClient(RuntimeClient):
    """
    Keeps containers, networks and volumes in dictionaries.

    ``calls`` lists ``(operation, target)`` pairs in call order, where target is
    the resource name for creates and the id for everything else.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.containers: Dict[str, Dict[str, Any]] = {}
        self.networks: Dict[str, NetworkInfo] = {}
        self.volumes: Dict[str, VolumeInfo] = {}
        self.health: Dict[str, str] = {}
        self.logs: Dict[str, str] = {}
        self.failures: Dict[tuple, Exception] = {}
        self._ids = itertools.count(1)

    def fail(self, operation: str, target: str = "*", error: Optional[Exception] = None) -> None:
        """Make ``operation`` raise for ``target`` (any target with ``*``)."""
        self.failures[(operation, target)] = error or RuntimeUnavailableError(
            f"{operation} {target} failed", operation, target
        )

    def calls_to(self, operation: str) -> List[str]:
        return [target for op, target in self.calls if op == operation]

    def _call(self, operation: str, target: str, *aliases: str) -> None:
        self.calls.append((operation, target))
        for key in (target, *aliases, "*"):
            if (operation, key) in self.failures:
                raise self.failures[(operation, key)]

    def _container(self, container_id: str) -> Dict[str, Any]:
        try:
            return self.containers[container_id]
        except KeyError:
            raise ResourceNotFoundError(f"No such container: {container_id}") from None

    def ping(self) -> bool:
        return True

    def create_network(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        self._call("create_network", name)
        if any(n.name == name for n in self.networks.values()):
            raise ResourceExistsError(f"network with name {name} already exists")
        network_id = f"net{next(self._ids):09d}"
        self.networks[network_id] = NetworkInfo(id=network_id, name=name, labels=(options or {}).get("labels", {}))
        return network_id

    def get_network(self, name_or_id: str) -> NetworkInfo:
        self._call("get_network", name_or_id)
        for network in self.networks.values():
            if name_or_id in (network.id, network.name):
                return network
        raise ResourceNotFoundError(f"network {name_or_id} not found")

    def remove_network(self, network_id: str) -> None:
        self._call("remove_network", network_id)
        if self.networks.pop(network_id, None) is None:
            raise ResourceNotFoundError(f"network {network_id} not found")

    def connect_network(self, network_id: str, container_id: str, aliases: Optional[List[str]] = None) -> None:
        self._call("connect_network", container_id, network_id)
        self._container(container_id)["networks"].append(network_id)

    def list_networks(self, labels: Dict[str, str]) -> List[NetworkInfo]:
        return [n for n in self.networks.values() if _matches(n.labels, labels)]

    def create_volume(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        self._call("create_volume", name)
        self.volumes[name] = VolumeInfo(name=name, labels=(options or {}).get("labels", {}))
        return name

    def get_volume(self, name: str) -> VolumeInfo:
        self._call("get_volume", name)
        try:
            return self.volumes[name]
        except KeyError:
            raise ResourceNotFoundError(f"volume {name} not found") from None

    def remove_volume(self, name: str) -> None:
        self._call("remove_volume", name)
        if self.volumes.pop(name, None) is None:
            raise ResourceNotFoundError(f"volume {name} not found")

    def list_volumes(self, labels: Dict[str, str]) -> List[VolumeInfo]:
        return [v for v in self.volumes.values() if _matches(v.labels, labels)]

    def create_container(self, spec: ContainerSpec) -> str:
        self._call("create_container", spec.name, spec.labels.get("com.docker.compose.service", ""))
        if any(c["spec"].name == spec.name for c in self.containers.values()):
            raise ResourceExistsError(f"container name {spec.name} is already in use")
        container_id = f"{next(self._ids):012x}{'0' * 52}"
        self.containers[container_id] = {"spec": spec, "running": False, "networks": [spec.network]}
        return container_id

    def start_container(self, container_id: str) -> None:
        self._call("start_container", container_id)
        self._container(container_id)["running"] = True

    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> None:
        self._call("stop_container", container_id)
        self._container(container_id)["running"] = False

    def remove_container(self, container_id: str, force: bool = False) -> None:
        self._call("remove_container", container_id)
        self._container(container_id)
        del self.containers[container_id]

    def inspect_container(self, container_id: str) -> ContainerInfo:
        self._call("inspect_container", container_id)
        container = self._container(container_id)
        spec = container["spec"]
        health = self.health.get(container_id)
        if health is None and spec.healthcheck:
            health = "healthy" if container["running"] else "unhealthy"
        return ContainerInfo(
            id=container_id,
            name=spec.name,
            running=container["running"],
            status="running" if container["running"] else "exited",
            exit_code=None if container["running"] else 0,
            health=health,
            labels=spec.labels,
        )

    def container_logs(self, container_id: str, options: Optional[LogOptions] = None) -> str:
        self._call("container_logs", container_id)
        spec = self._container(container_id)["spec"]
        output = self.logs.get(container_id, f"{spec.name} ready\n")
        if options is not None and not options.all and options.n_lines is not None:
            output = "".join(output.splitlines(keepends=True)[-options.n_lines:])
        return output

    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        return [
            self.inspect_container(container_id)
            for container_id, c in self.containers.items()
            if _matches(c["spec"].labels, labels)
        ]

    def container_names(self) -> List[str]:
        return sorted(c["spec"].name for c in self.containers.values())


@pytest.fixture
def fake_client():
    return FakeRuntimeClient()


@pytest.fixture
def web_stack(fake_client, tmp_path):
    """A stack with ``db`` (postgres:13) and ``web`` (nginx) depending on it."""
    stack = Stack("shop", client=fake_client, base_dir=str(tmp_path))
    stack.add_service(ServiceDefinition(name="db", image_name="postgres:13"))
    stack.add_service(ServiceDefinition(name="web", image_name="nginx").with_dependency("db"))
    return stack
