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
Health probing for deployed stacks: per-container state, per-service
aggregates and waiting for a stack to become healthy.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import RuntimeUnavailableError
from ..RUNTIME.runtime_client import RuntimeClient

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status of a container."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "no_healthcheck"
    UNKNOWN = "unknown"


@dataclass
class ContainerHealth:
    """Health information for one container."""

    id: str
    running: bool = False
    status: str = "unknown"
    exit_code: Optional[int] = None
    health: HealthStatus = HealthStatus.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "running": self.running,
            "status": self.status,
            "exit_code": self.exit_code,
            "health": self.health.value,
        }


@dataclass
class ServiceHealth:
    """Aggregated health information for a service."""

    replicas: int = 0
    running: int = 0
    healthy: int = 0
    unhealthy: int = 0
    containers: List[ContainerHealth] = field(default_factory=list)

    @property
    def settled(self) -> bool:
        """
        True when every replica runs and none is still starting or unhealthy.
        """
        return self.running == self.replicas and all(
            c.health in (HealthStatus.HEALTHY, HealthStatus.NONE) for c in self.containers
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "replicas": self.replicas,
            "running": self.running,
            "healthy": self.healthy,
            "unhealthy": self.unhealthy,
            "containers": [c.to_dict() for c in self.containers],
        }


class HealthMonitor:
    """
    Inspects containers through the runtime client. Inspect failures are
    reported as ``not_found`` containers rather than raised.
    """

    def __init__(self, client: RuntimeClient, interval: float = 2.0):
        """
        Initializes the health monitor.

        :param client: Runtime client shared with the orchestrator.
        :param interval: Seconds between polls in ``wait_until_healthy``.
        """
        self.client = client
        self.interval = interval

    def probe_container(self, container_id: str) -> ContainerHealth:
        """
        Get the health of one container.
        """
        try:
            info = self.client.inspect_container(container_id)
        except RuntimeUnavailableError as exc:
            logger.debug("Inspect of %s failed: %s", container_id[:12], exc)
            return ContainerHealth(id=container_id, running=False, status="not_found")

        if info.health is None:
            health = HealthStatus.NONE
        else:
            try:
                health = HealthStatus(info.health)
            except ValueError:
                health = HealthStatus.UNKNOWN
        return ContainerHealth(
            id=container_id,
            running=info.running,
            status=info.status,
            exit_code=info.exit_code,
            health=health,
        )

    def probe_service(self, container_ids: List[str]) -> ServiceHealth:
        """
        Get the aggregated health of a service's tracked containers.
        """
        result = ServiceHealth(replicas=len(container_ids))
        for container_id in container_ids:
            container = self.probe_container(container_id)
            result.containers.append(container)
            if container.running:
                result.running += 1
            if container.health == HealthStatus.HEALTHY:
                result.healthy += 1
            elif container.health == HealthStatus.UNHEALTHY:
                result.unhealthy += 1
        return result

    def probe_all(self, containers: Dict[str, List[str]]) -> Dict[str, ServiceHealth]:
        return {service: self.probe_service(ids) for service, ids in containers.items()}

    def wait_until_healthy(self, containers: Dict[str, List[str]], timeout: float) -> bool:
        """
        Polls until every service is settled or the timeout expires.

        :param containers: Tracked container ids per service.
        :param timeout: Seconds to wait.
        :return: True if the stack settled in time.
        """
        deadline = time.monotonic() + timeout
        while True:
            pending = [name for name, health in self.probe_all(containers).items() if not health.settled]
            if not pending:
                return True
            if time.monotonic() >= deadline:
                logger.warning("Services not healthy after %.0fs: %s", timeout, ", ".join(pending))
                return False
            logger.debug("Waiting for %s", ", ".join(pending))
            time.sleep(self.interval)
