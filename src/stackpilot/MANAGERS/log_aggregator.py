"""
Log aggregation for the containers of a stack.
"""
import logging
from typing import Dict, List, Optional

from ..errors import RuntimeUnavailableError
from ..RUNTIME.runtime_client import LogOptions, RuntimeClient

logger = logging.getLogger(__name__)


class LogAggregator:
    """
    Aggregates logs from every container of the requested services.
    """
    def __init__(self, client: RuntimeClient):
        """
        Initializes the log aggregator.

        :param client: Runtime client shared with the orchestrator.
        """
        self.client = client

    def collect(self,
                containers: Dict[str, List[str]],
                services: Optional[List[str]] = None,
                options: Optional[LogOptions] = None) -> str:
        """
        Concatenates the logs of the given services, each line prefixed with
        its service name. Unknown services and containers whose logs cannot be
        read are left out.

        :param containers: Tracked container ids per service.
        :param services: Services to include; all tracked services if None.
        :param options: Which log output to fetch.
        :return: The combined log text.
        """
        names = list(services) if services is not None else list(containers)
        width = max((len(name) for name in names), default=0)
        lines = []
        for name in names:
            for container_id in containers.get(name, []):
                try:
                    output = self.client.container_logs(container_id, options)
                except RuntimeUnavailableError as exc:
                    logger.debug("Skipping logs of %s: %s", container_id[:12], exc)
                    continue
                for line in output.splitlines():
                    lines.append(f"{name:{width}} | {line}")
        return "\n".join(lines)
