"""
Network management for stacks: namespaced creation, attachment and teardown.
"""
import logging
from typing import Dict, List

from ..errors import ResourceExistsError, RuntimeUnavailableError
from ..MODELS.runtime_state import OperationReport, StackRuntimeState
from ..MODELS.stack_definition import StackDefinition
from ..RUNTIME.runtime_client import RuntimeClient

logger = logging.getLogger(__name__)

PROJECT_LABEL = "com.docker.compose.project"
NETWORK_LABEL = "com.docker.compose.network"


class NetworkManager:
    """
    Creates the networks a stack needs and tracks their runtime ids.
    """
    def __init__(self, client: RuntimeClient, stack_name: str):
        """
        Initializes the network manager.

        :param client: Runtime client shared with the orchestrator.
        :param stack_name: Prefix for every network created.
        """
        self.client = client
        self.stack_name = stack_name

    def network_name(self, logical_name: str) -> str:
        """
        Returns the runtime name of a logical network, e.g. ``shop_default``.
        """
        return f"{self.stack_name}_{logical_name}"

    def ensure_networks(self, definition: StackDefinition, state: StackRuntimeState) -> Dict[str, str]:
        """
        Creates every network referenced by the definition plus the default one.
        A network that already exists is adopted rather than treated as an error.

        :return: Mapping from logical name to runtime id.
        :raises RuntimeUnavailableError: For any failure other than "already exists".
        """
        for logical_name in definition.referenced_networks():
            if logical_name in state.networks:
                continue
            full_name = self.network_name(logical_name)
            options = dict(definition.networks.get(logical_name) or {})
            options["labels"] = {
                **(options.get("labels") or {}),
                PROJECT_LABEL: self.stack_name,
                NETWORK_LABEL: logical_name,
            }
            try:
                network_id = self.client.create_network(full_name, options)
                logger.info("Created network %s", full_name)
            except ResourceExistsError:
                network_id = self.client.get_network(full_name).id
                logger.info("Network %s already exists, reusing it", full_name)
            state.networks[logical_name] = network_id
        return dict(state.networks)

    def attach(self, container_id: str, service: str, networks: List[str], state: StackRuntimeState) -> None:
        """
        Connects a container to its secondary networks; the first network is
        set when the container is created.

        :raises RuntimeUnavailableError: If a connection fails.
        """
        for logical_name in networks[1:]:
            self.client.connect_network(state.networks[logical_name], container_id, aliases=[service])

    def remove_networks(self, state: StackRuntimeState, report: OperationReport) -> None:
        """
        Deletes every tracked network, recording failures instead of raising.
        """
        for logical_name, network_id in list(state.networks.items()):
            try:
                self.client.remove_network(network_id)
                report.removed_networks.append(logical_name)
            except RuntimeUnavailableError as exc:
                logger.warning("Could not remove network %s: %s", self.network_name(logical_name), exc)
                report.suppress("remove network", logical_name, exc)
        state.networks.clear()
