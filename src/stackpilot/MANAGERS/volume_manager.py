"""
Volume management for stacks: named volume creation, mount rewriting and teardown.
"""
import logging
import os
from typing import List

from ..errors import RuntimeUnavailableError
from ..MODELS.runtime_state import OperationReport, StackRuntimeState
from ..MODELS.service_definition import ServiceDefinition, VolumeMount
from ..MODELS.stack_definition import StackDefinition
from ..RUNTIME.runtime_client import RuntimeClient
from .network_manager import PROJECT_LABEL

logger = logging.getLogger(__name__)

VOLUME_LABEL = "com.docker.compose.volume"


class VolumeManager:
    """
    Pre-creates named volumes and resolves mount sources for containers.
    """
    def __init__(self, client: RuntimeClient, stack_name: str, base_dir: str = "."):
        """
        Initializes the volume manager.

        :param client: Runtime client shared with the orchestrator.
        :param stack_name: Prefix for every volume created.
        :param base_dir: The base directory for resolving relative bind mounts.
        """
        self.client = client
        self.stack_name = stack_name
        self.base_dir = os.path.abspath(base_dir)

    def volume_name(self, logical_name: str) -> str:
        return f"{self.stack_name}_{logical_name}"

    def ensure_volumes(self, definition: StackDefinition, state: StackRuntimeState) -> None:
        """
        Creates one volume per distinct named-volume source. Bind mounts are
        left to the runtime.

        :raises RuntimeUnavailableError: If a volume cannot be created.
        """
        for logical_name in definition.named_volumes():
            if logical_name in state.volumes:
                continue
            options = dict(definition.volumes.get(logical_name) or {})
            options["labels"] = {
                **(options.get("labels") or {}),
                PROJECT_LABEL: self.stack_name,
                VOLUME_LABEL: logical_name,
            }
            state.volumes[logical_name] = self.client.create_volume(self.volume_name(logical_name), options)
            logger.info("Created volume %s", state.volumes[logical_name])

    def resolve_source(self, mount: VolumeMount, state: StackRuntimeState) -> str:
        """
        Resolves the source of a mount to what the runtime expects.

        :param mount: The volume mount.
        :return: The runtime volume name or an absolute host path.
        """
        if mount.is_named_volume:
            return state.volumes.get(mount.source) or self.volume_name(mount.source)
        source = os.path.expanduser(mount.source)
        return os.path.abspath(os.path.join(self.base_dir, source))

    def container_binds(self, service: ServiceDefinition, state: StackRuntimeState) -> List[str]:
        """
        Returns the service's mounts as ``source:target:mode`` strings with
        sources rewritten for the runtime. Anonymous volumes are excluded.
        """
        binds = []
        for mount in service.volumes:
            if not mount.source:
                continue
            binds.append(f"{self.resolve_source(mount, state)}:{mount.target}:{mount.mode}")
        return binds

    def anonymous_volumes(self, service: ServiceDefinition) -> List[str]:
        return [mount.target for mount in service.volumes if not mount.source]

    def remove_volumes(self, state: StackRuntimeState, report: OperationReport) -> None:
        """
        Deletes every tracked volume, recording failures instead of raising.
        """
        for logical_name, volume_name in list(state.volumes.items()):
            try:
                self.client.remove_volume(volume_name)
                report.removed_volumes.append(logical_name)
            except RuntimeUnavailableError as exc:
                logger.warning("Could not remove volume %s: %s", volume_name, exc)
                report.suppress("remove volume", logical_name, exc)
        state.volumes.clear()
