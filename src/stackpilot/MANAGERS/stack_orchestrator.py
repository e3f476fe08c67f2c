# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
The stack orchestrator: deploys, scales, restarts and tears down a stack of
services on a container runtime.
"""
import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..errors import (
    ConfigurationError,
    DeploymentError,
    InvalidStateError,
    RuntimeUnavailableError,
)
from ..MODELS.runtime_state import OperationReport, StackRuntimeState, StackStatus
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.stack_definition import ScalePolicy, ScaleStrategy, StackDefinition
from ..PARSERS.compose_parser import ComposeParser
from ..RUNTIME.docker_client import DockerRuntimeClient
from ..RUNTIME.runtime_client import LogOptions, RuntimeClient
from .environment_manager import EnvironmentManager
from .health_monitor import HealthMonitor
from .log_aggregator import LogAggregator
from .network_manager import NETWORK_LABEL, PROJECT_LABEL, NetworkManager
from .replica_manager import REPLICA_LABEL, SERVICE_LABEL, ReplicaManager
from .volume_manager import VOLUME_LABEL, VolumeManager

logger = logging.getLogger(__name__)


class Stack:
    """
    A named stack of services and the runtime resources deployed for it.

    Lifecycle operations run one at a time; calling one while another is in
    flight on the same instance raises ``InvalidStateError``.
    """
    def __init__(self,
                 name: str,
                 client: Optional[RuntimeClient] = None,
                 base_dir: str = ".",
                 definition: Optional[StackDefinition] = None,
                 stop_timeout: Optional[int] = None):
        """
        Initializes the stack.

        :param name: Stack name, used as the prefix of every runtime resource.
        :param client: Runtime client; a Docker client configured from the environment if None.
        :param base_dir: Project directory for relative bind mounts and env files.
        :param definition: Initial definition; an empty one if None.
        :param stop_timeout: Seconds to wait for containers to stop gracefully.
        """
        if definition is None:
            definition = StackDefinition(name=name)
        elif definition.name != name:
            definition = definition.model_copy(update={"name": name}, deep=True)
        self.name = name
        self.base_dir = base_dir
        self.client = client if client is not None else DockerRuntimeClient()
        self._definition = definition
        self._state = StackRuntimeState()
        self._lock = threading.Lock()

        self.network_manager = NetworkManager(self.client, name)
        self.volume_manager = VolumeManager(self.client, name, base_dir)
        self.env_manager = EnvironmentManager(base_dir)
        self.replica_manager = ReplicaManager(
            self.client, name, self.network_manager, self.volume_manager, self.env_manager,
            stop_timeout=stop_timeout,
        )
        self.health_monitor = HealthMonitor(self.client)
        self.log_aggregator = LogAggregator(self.client)

    def __repr__(self) -> str:
        return f"Stack(name={self.name!r}, status={self._state.status.value!r})"

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise InvalidStateError(
                f"Cannot {operation} stack '{self.name}' while another operation is in progress"
            )
        try:
            yield
        finally:
            self._lock.release()

    # Definition

    @property
    def definition(self) -> StackDefinition:
        return self._definition

    @property
    def state(self) -> StackRuntimeState:
        """
        A copy of the runtime state taken between operations.
        """
        with self._lock:
            return self._state.snapshot()

    def add_service(self, service: ServiceDefinition) -> None:
        """
        Adds a service. Its dependencies must already be part of the stack.

        :raises ConfigurationError: On a duplicate name, a missing dependency or a cycle.
        """
        with self._exclusive("modify"):
            self._definition.add_service(service)

    def update_service(self, service: ServiceDefinition) -> None:
        with self._exclusive("modify"):
            self._definition.update_service(service)

    def remove_service(self, name: str) -> ServiceDefinition:
        """
        Removes a service from the definition. Containers already deployed for
        it stay tracked until ``down``.
        """
        with self._exclusive("modify"):
            return self._definition.remove_service(name)

    def get_service(self, name: str) -> ServiceDefinition:
        return self._definition.get_service(name)

    def get_services(self) -> List[str]:
        return self._definition.service_names()

    def get_deployment_order(self) -> List[str]:
        return list(self._definition.deployment_order)

    def set_scale_policy(self,
                         service: str,
                         replicas: int,
                         strategy: Optional[ScaleStrategy] = None) -> ScalePolicy:
        """
        Records the replica count used by the next ``up``; nothing is deployed.
        """
        with self._exclusive("modify"):
            return self._definition.set_scale_policy(service, replicas, strategy)

    # Lifecycle

    def _preflight(self, services: List[str]) -> None:
        """
        Builds one container spec per service so definition errors surface
        before any runtime call is made.
        """
        for service in services:
            self.replica_manager.build_spec(self._definition, service, 1, self._state)

    def _prepare_resources(self) -> None:
        self.network_manager.ensure_networks(self._definition, self._state)
        self.volume_manager.ensure_volumes(self._definition, self._state)

    def _launch(self, service: str, first: int, last: int) -> None:
        for replica in range(first, last + 1):
            self.replica_manager.launch(self._definition, service, replica, self._state)

    def up(self) -> None:
        """
        Deploys the stack: networks, then named volumes, then every service's
        replicas in dependency order.

        A service whose deployment fails does not stop independent services;
        services depending on it are skipped. Nothing is rolled back.

        :raises ConfigurationError: If the definition is invalid (no runtime call is made).
        :raises NotSupportedError: If a service can only be built.
        :raises InvalidStateError: If the stack is already deployed.
        :raises RuntimeUnavailableError: If a network or volume cannot be created.
        :raises DeploymentError: If some services failed or were skipped.
        """
        with self._exclusive("deploy"):
            if self._state.status != StackStatus.NOT_DEPLOYED:
                raise InvalidStateError(
                    f"Stack '{self.name}' is {self._state.status.value}; run down before deploying again"
                )
            order = self._definition.compute_deployment_order()
            self._preflight(order)

            logger.info("Deploying stack %s: %s", self.name, ", ".join(order))
            self._state.status = StackStatus.DEPLOYING
            deployed: List[str] = []
            failed: Dict[str, Exception] = {}
            skipped: List[str] = []
            completed = False
            try:
                self._prepare_resources()
                for service in order:
                    blocked = [dep for dep in self._definition.get_service(service).depends_on
                               if dep in failed or dep in skipped]
                    if blocked:
                        logger.warning("Skipping %s: dependency %s was not deployed", service, ", ".join(blocked))
                        skipped.append(service)
                        continue
                    self._state.containers.setdefault(service, [])
                    try:
                        self._launch(service, 1, self._definition.replicas_for(service))
                    except RuntimeUnavailableError as exc:
                        logger.error("Failed to deploy %s: %s", service, exc)
                        failed[service] = exc
                    else:
                        deployed.append(service)
                completed = True
            finally:
                if completed and not failed and not skipped:
                    self._state.status = StackStatus.RUNNING
                elif deployed or (not completed and self._state.total_containers()):
                    self._state.status = StackStatus.PARTIALLY_RUNNING
                else:
                    self._state.status = StackStatus.FAILED
                logger.info("Stack %s is %s", self.name, self._state.status.value)

            if failed or skipped:
                raise DeploymentError(
                    f"Stack '{self.name}' was not fully deployed",
                    deployed=deployed, failed=failed, skipped=skipped,
                )

    def _teardown_services(self) -> List[str]:
        """
        Tracked services in reverse deployment order; services no longer in the
        definition come last, most recently deployed first.
        """
        tracked = self._state.containers
        names = [s for s in reversed(self._definition.deployment_order) if s in tracked]
        names.extend(s for s in reversed(list(tracked)) if s not in names)
        return names

    def down(self, remove_volumes: bool = True) -> OperationReport:
        """
        Removes every tracked container, then the networks, then the volumes.
        Individual failures are recorded in the report, never raised, and the
        runtime state is always reset to NotDeployed.

        :param remove_volumes: Keep named volumes (and their data) if False.
        :return: What was removed and which errors were ignored.
        """
        with self._exclusive("tear down"):
            report = OperationReport()
            try:
                for service in self._teardown_services():
                    for container_id in reversed(self._state.containers[service]):
                        self.replica_manager.retire(container_id, report)
                self.network_manager.remove_networks(self._state, report)
                if remove_volumes:
                    self.volume_manager.remove_volumes(self._state, report)
            finally:
                self._state.reset()
            if report.suppressed:
                logger.warning("Stack %s removed with %d ignored error(s)", self.name, len(report.suppressed))
            else:
                logger.info("Stack %s removed", self.name)
            return report

    def scale(self, service: str, replicas: int) -> OperationReport:
        """
        Converges the number of containers of one service to ``replicas``.
        New replicas continue the index sequence; surplus replicas are removed
        highest index first. On a stack that is not running only the scale
        policy is updated.

        :raises ServiceNotFoundError: If the service is not defined (no runtime call is made).
        :raises ConfigurationError: If ``replicas`` is negative.
        :raises RuntimeUnavailableError: If a new replica cannot be started.
        """
        with self._exclusive("scale"):
            self._definition.set_scale_policy(service, replicas)
            report = OperationReport()
            if not self._state.is_active():
                logger.info("Stack %s is not running; %s will start with %d replica(s)", self.name, service, replicas)
                return report

            current = self._state.containers.setdefault(service, [])
            count = len(current)
            if replicas > count:
                self._preflight([service])
                self._prepare_resources()
                logger.info("Scaling %s up from %d to %d", service, count, replicas)
                self._launch(service, count + 1, replicas)
            elif replicas < count:
                logger.info("Scaling %s down from %d to %d", service, count, replicas)
                while len(current) > replicas:
                    self.replica_manager.retire(current.pop(), report)
            return report

    def restart_service(self, service: str) -> OperationReport:
        """
        Replaces every container of a service with a fresh one built from the
        current definition, keeping replica indices. With the rolling-update
        strategy replicas are replaced one at a time; with recreate all of them
        are removed first.

        :raises ServiceNotFoundError: If the service is not defined (no runtime call is made).
        :raises InvalidStateError: If the stack is not running.
        :raises RuntimeUnavailableError: If a replacement cannot be started.
        """
        with self._exclusive("restart"):
            self._definition.get_service(service)
            if not self._state.is_active():
                raise InvalidStateError(
                    f"Cannot restart {service}: stack '{self.name}' is {self._state.status.value}"
                )
            self._preflight([service])
            self._prepare_resources()

            policy = self._definition.get_scale_policy(service) or ScalePolicy()
            target = policy.replicas
            report = OperationReport()
            pending = list(self._state.containers.get(service, []))
            self._state.containers[service] = []
            logger.info("Restarting %s (%s)", service, policy.strategy.value)
            try:
                if policy.strategy == ScaleStrategy.RECREATE:
                    while pending:
                        self.replica_manager.retire(pending.pop(), report)
                    self._launch(service, 1, target)
                else:
                    for replica in range(1, max(len(pending), target) + 1):
                        if pending:
                            self.replica_manager.retire(pending.pop(0), report)
                        if replica <= target:
                            self._launch(service, replica, replica)
            finally:
                # containers not yet replaced stay tracked for down
                self._state.containers[service].extend(pending)
            return report

    def stop(self) -> OperationReport:
        """
        Stops every container without removing it.

        :raises InvalidStateError: If the stack is not running.
        """
        with self._exclusive("stop"):
            if not self._state.is_active():
                raise InvalidStateError(f"Stack '{self.name}' is {self._state.status.value}, not running")
            report = OperationReport()
            for service in self._teardown_services():
                for container_id in reversed(self._state.containers[service]):
                    self.replica_manager.stop(container_id, report)
            self._state.status = StackStatus.STOPPED
            logger.info("Stack %s stopped", self.name)
            return report

    def start(self) -> None:
        """
        Starts the containers of a stopped stack in deployment order.

        :raises InvalidStateError: If the stack is not stopped.
        :raises RuntimeUnavailableError: If a container cannot be started.
        """
        with self._exclusive("start"):
            if self._state.status != StackStatus.STOPPED:
                raise InvalidStateError(f"Stack '{self.name}' is {self._state.status.value}, not stopped")
            names = list(reversed(self._teardown_services()))
            started = 0
            try:
                for service in names:
                    for container_id in self._state.containers[service]:
                        self.client.start_container(container_id)
                        started += 1
            except RuntimeUnavailableError:
                if started:
                    self._state.status = StackStatus.PARTIALLY_RUNNING
                raise
            self._state.status = StackStatus.RUNNING
            logger.info("Stack %s started", self.name)

    def discover(self) -> StackRuntimeState:
        """
        Rebuilds the runtime state from the labels of resources already on the
        engine, so a stack deployed by another process can be managed.

        :return: A copy of the discovered state.
        :raises InvalidStateError: If this instance already tracks a deployment.
        """
        with self._exclusive("discover"):
            if self._state.status != StackStatus.NOT_DEPLOYED:
                raise InvalidStateError(f"Stack '{self.name}' is already {self._state.status.value}")
            project = {PROJECT_LABEL: self.name}

            found: Dict[str, List[Any]] = {}
            for info in self.client.list_containers(project):
                service = info.labels.get(SERVICE_LABEL)
                if not service:
                    continue
                try:
                    replica = int(info.labels.get(REPLICA_LABEL, "0"))
                except ValueError:
                    replica = 0
                found.setdefault(service, []).append((replica, info))

            order = [s for s in self._definition.deployment_order if s in found]
            order.extend(s for s in found if s not in order)
            running = total = 0
            for service in order:
                for _, info in sorted(found[service], key=lambda item: item[0]):
                    self._state.track_container(service, info.id)
                    total += 1
                    running += int(info.running)

            for network in self.client.list_networks(project):
                self._state.networks[network.labels.get(NETWORK_LABEL, network.name)] = network.id
            for volume in self.client.list_volumes(project):
                self._state.volumes[volume.labels.get(VOLUME_LABEL, volume.name)] = volume.name

            if not total:
                self._state.status = StackStatus.NOT_DEPLOYED
            elif running == total:
                self._state.status = StackStatus.RUNNING
            elif running:
                self._state.status = StackStatus.PARTIALLY_RUNNING
            else:
                self._state.status = StackStatus.STOPPED
            logger.debug("Discovered %d container(s) for stack %s", total, self.name)
            return self._state.snapshot()

    # Inspection

    def status(self) -> Dict[str, Any]:
        """
        Reports the stack status with a live probe of every tracked container.
        Every defined service is listed, with zero replicas when nothing is
        tracked for it. Containers that cannot be inspected are reported as
        ``not_found``.
        """
        snapshot = self.state
        names = self._definition.service_names()
        names.extend(s for s in snapshot.containers if s not in names)
        tracked = {name: snapshot.containers.get(name, []) for name in names}
        return {
            "name": self.name,
            "status": snapshot.status.value,
            "services": {
                service: health.to_dict()
                for service, health in self.health_monitor.probe_all(tracked).items()
            },
            "total_containers": snapshot.total_containers(),
            "networks": len(snapshot.networks),
            "volumes": len(snapshot.volumes),
        }

    def wait_until_healthy(self, timeout: float) -> bool:
        return self.health_monitor.wait_until_healthy(self.state.containers, timeout)

    def logs(self,
             services: Optional[List[str]] = None,
             tail: Optional[int] = None,
             timestamps: bool = False) -> str:
        """
        Collects the logs of the given services (all if None), each line
        prefixed with its service name.

        :param tail: Only the last ``tail`` lines of each container.
        :param timestamps: Include runtime timestamps.
        """
        options = LogOptions(timestamps=timestamps, n_lines=tail, all=tail is None)
        return self.log_aggregator.collect(self.state.containers, services, options)

    # Persistence

    @classmethod
    def from_file(cls,
                  path: str,
                  client: Optional[RuntimeClient] = None,
                  name: Optional[str] = None) -> "Stack":
        """
        Loads a stack from a compose file. Relative paths in the file resolve
        against the file's directory.

        :raises ConfigurationError: If the file is missing or invalid.
        """
        definition = ComposeParser().parse(path, name=name)
        base_dir = os.path.dirname(os.path.abspath(path))
        return cls(definition.name, client=client, base_dir=base_dir, definition=definition)

    @classmethod
    def from_yaml(cls,
                  text: str,
                  client: Optional[RuntimeClient] = None,
                  name: Optional[str] = None,
                  base_dir: str = ".") -> "Stack":
        """
        Loads a stack from compose YAML text.

        :raises ConfigurationError: If the document is invalid.
        """
        definition = ComposeParser().parse_from_string(text, name=name)
        return cls(definition.name, client=client, base_dir=base_dir, definition=definition)

    def to_yaml(self) -> str:
        return ComposeParser().serialize(self._definition)

    def to_file(self, path: str) -> None:
        """
        Writes the definition to a compose file.

        :raises ConfigurationError: If the file cannot be written.
        """
        try:
            with open(path, 'w') as f:
                f.write(self.to_yaml())
        except OSError as exc:
            raise ConfigurationError(f"Failed to write compose file {path}: {exc}") from exc
