"""
Lifecycle management for the containers that make up a service's replicas.
"""
import logging
from typing import Any, Dict, Optional

from ..errors import ConfigurationError, NotSupportedError, RuntimeUnavailableError
from ..MODELS.runtime_state import OperationReport, StackRuntimeState
from ..MODELS.service_definition import RestartPolicyCondition, ServiceDefinition
from ..MODELS.stack_definition import StackDefinition
from ..RUNTIME.runtime_client import ContainerSpec, RuntimeClient
from ..UTILS.units import parse_memory
from .environment_manager import EnvironmentManager
from .network_manager import PROJECT_LABEL, NetworkManager
from .volume_manager import VolumeManager

logger = logging.getLogger(__name__)

SERVICE_LABEL = "com.docker.compose.service"
REPLICA_LABEL = "com.docker.compose.container-number"

NANOSECONDS = 1_000_000_000


class ReplicaManager:
    """
    Creates, starts, stops and removes the containers of a service.
    """
    def __init__(self,
                 client: RuntimeClient,
                 stack_name: str,
                 network_manager: NetworkManager,
                 volume_manager: VolumeManager,
                 env_manager: EnvironmentManager,
                 stop_timeout: Optional[int] = None):
        """
        Initializes the replica manager.

        :param client: Runtime client shared with the orchestrator.
        :param stack_name: Prefix for container names.
        :param stop_timeout: Seconds to wait for a graceful stop; the runtime default if None.
        """
        self.client = client
        self.stack_name = stack_name
        self.network_manager = network_manager
        self.volume_manager = volume_manager
        self.env_manager = env_manager
        self.stop_timeout = stop_timeout

    def container_name(self, service: str, replica: int) -> str:
        return f"{self.stack_name}_{service}_{replica}"

    def membership_labels(self, service: str, replica: int) -> Dict[str, str]:
        return {
            PROJECT_LABEL: self.stack_name,
            SERVICE_LABEL: service,
            REPLICA_LABEL: str(replica),
        }

    def _port_bindings(self, svc: ServiceDefinition) -> Dict[str, Any]:
        bindings: Dict[str, Any] = {}
        for port in svc.ports:
            key = f"{port.target}/{port.protocol}"
            if port.host_ip:
                binding = (port.host_ip, port.published) if port.published else (port.host_ip,)
            else:
                binding = port.published
            if key in bindings:
                existing = bindings[key]
                bindings[key] = (existing if isinstance(existing, list) else [existing]) + [binding]
            else:
                bindings[key] = binding
        return bindings

    def _resource_limits(self, svc: ServiceDefinition) -> Dict[str, int]:
        limits = svc.resource_limits
        try:
            converted = {
                "mem_limit": parse_memory(limits.memory) if limits.memory else None,
                "mem_reservation": parse_memory(limits.memory_reservation) if limits.memory_reservation else None,
            }
        except ValueError as exc:
            raise ConfigurationError(f"Service '{svc.name}': {exc}") from exc
        converted.update({
            "cpu_shares": limits.cpu_shares,
            "cpu_quota": limits.cpu_quota,
            "cpu_period": limits.cpu_period,
            "nano_cpus": int(limits.cpus * NANOSECONDS) if limits.cpus else None,
        })
        return {key: value for key, value in converted.items() if value is not None}

    def _restart_policy(self, svc: ServiceDefinition) -> Optional[Dict[str, Any]]:
        policy = svc.restart_policy
        if policy.condition == RestartPolicyCondition.NO:
            return None
        result: Dict[str, Any] = {"Name": policy.condition.value}
        if policy.condition == RestartPolicyCondition.ON_FAILURE:
            result["MaximumRetryCount"] = policy.max_retries
        return result

    def _healthcheck(self, svc: ServiceDefinition) -> Optional[Dict[str, Any]]:
        hc = svc.health_check
        if hc is None:
            return None
        return {
            "test": hc.test,
            "interval": int(hc.interval * NANOSECONDS),
            "timeout": int(hc.timeout * NANOSECONDS),
            "retries": hc.retries,
            "start_period": int(hc.start_period * NANOSECONDS),
        }

    def build_spec(self,
                   definition: StackDefinition,
                   service: str,
                   replica: int,
                   state: StackRuntimeState) -> ContainerSpec:
        """
        Translates a service definition into the container spec for one replica.

        :raises NotSupportedError: If the service can only be built, not pulled.
        :raises ConfigurationError: If the service has no image or an env file is missing.
        """
        svc = definition.get_service(service)
        if not svc.image_name:
            if svc.requires_build:
                raise NotSupportedError(
                    f"Service '{service}' only defines a build; building images is not supported"
                )
            raise ConfigurationError(f"Service '{service}' has neither image nor build")

        networks = definition.service_networks(service)
        return ContainerSpec(
            image=svc.image_name,
            name=self.container_name(service, replica),
            command=svc.command,
            entrypoint=svc.entrypoint,
            environment=self.env_manager.get_merged_environment(svc.environment, svc.env_files),
            volumes=self.volume_manager.container_binds(svc, state),
            anonymous_volumes=self.volume_manager.anonymous_volumes(svc),
            working_dir=svc.working_dir,
            hostname=svc.hostname,
            user=svc.user,
            labels={**svc.labels, **self.membership_labels(service, replica)},
            ports=self._port_bindings(svc),
            restart_policy=self._restart_policy(svc),
            resource_limits=self._resource_limits(svc),
            healthcheck=self._healthcheck(svc),
            network=self.network_manager.network_name(networks[0]),
            network_aliases=[service],
        )

    def launch(self,
               definition: StackDefinition,
               service: str,
               replica: int,
               state: StackRuntimeState) -> str:
        """
        Creates, attaches and starts one replica. The container is tracked as
        soon as it exists, so a failed start still leaves it visible to ``down``.

        :return: The new container id.
        :raises RuntimeUnavailableError: If any runtime call fails.
        """
        spec = self.build_spec(definition, service, replica, state)
        container_id = self.client.create_container(spec)
        state.track_container(service, container_id)
        self.network_manager.attach(container_id, service, definition.service_networks(service), state)
        self.client.start_container(container_id)
        logger.info("Started %s (%s)", spec.name, container_id[:12])
        return container_id

    def stop(self, container_id: str, report: OperationReport) -> None:
        """
        Stops one container, recording a failure instead of raising.
        """
        try:
            self.client.stop_container(container_id, timeout=self.stop_timeout)
        except RuntimeUnavailableError as exc:
            logger.warning("Could not stop container %s: %s", container_id[:12], exc)
            report.suppress("stop container", container_id, exc)

    def retire(self, container_id: str, report: OperationReport) -> None:
        """
        Stops then force-removes one container, recording failures instead of raising.
        """
        self.stop(container_id, report)
        try:
            self.client.remove_container(container_id, force=True)
            report.removed_containers.append(container_id)
        except RuntimeUnavailableError as exc:
            logger.warning("Could not remove container %s: %s", container_id[:12], exc)
            report.suppress("remove container", container_id, exc)
