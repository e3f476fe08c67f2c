"""
Models for a named stack of services, its deployment order and scale policies.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import ConfigurationError, ServiceNotFoundError
from ..RUNNERS.dependency_resolver import DependencyResolver
from .service_definition import ServiceDefinition

DEFAULT_NETWORK = "default"


class ScaleStrategy(str, Enum):
    """
    How replicas are replaced when a service is rescaled or restarted.
    """
    ROLLING_UPDATE = "rolling-update"
    RECREATE = "recreate"


class ScalePolicy(BaseModel):
    """
    Desired replica count for a service.
    """
    replicas: int = Field(default=1, ge=0)
    strategy: ScaleStrategy = ScaleStrategy.ROLLING_UPDATE


class StackDefinition(BaseModel):
    """
    Complete configuration for a multi-service stack.
    Equivalent to a parsed docker-compose.yml file plus the derived
    deployment order.

    ``deployment_order`` is recomputed on every structural change. A change
    that would leave the graph invalid is rejected and the definition is left
    exactly as it was.
    """
    name: str = Field(min_length=1)
    services: Dict[str, ServiceDefinition] = {}
    deployment_order: List[str] = []
    scale_policies: Dict[str, ScalePolicy] = {}
    networks: Dict[str, Dict[str, Any]] = {}
    volumes: Dict[str, Dict[str, Any]] = {}

    def _commit(self, candidate: Dict[str, ServiceDefinition]) -> None:
        order = DependencyResolver().resolve_order(candidate)
        self.services = candidate
        self.deployment_order = order

    def compute_deployment_order(self) -> List[str]:
        """
        Validates the dependency graph and stores the resulting order.

        :raises ConfigurationError: On a missing dependency or a cycle; the
            previous order is kept.
        """
        self._commit(dict(self.services))
        return list(self.deployment_order)

    def add_service(self, service: ServiceDefinition) -> None:
        """
        :raises ConfigurationError: If the name is taken or the new edges are invalid.
        """
        if service.name in self.services:
            raise ConfigurationError(f"Service '{service.name}' already defined in stack '{self.name}'")
        self._commit({**self.services, service.name: service})

    def update_service(self, service: ServiceDefinition) -> None:
        """
        Replaces an existing service definition.

        :raises ServiceNotFoundError: If no service has that name.
        :raises ConfigurationError: If the changed edges are invalid.
        """
        if service.name not in self.services:
            raise ServiceNotFoundError(service.name, self.name)
        self._commit({**self.services, service.name: service})

    def remove_service(self, name: str) -> ServiceDefinition:
        """
        :raises ServiceNotFoundError: If no service has that name.
        :raises ConfigurationError: If another service still depends on it.
        """
        if name not in self.services:
            raise ServiceNotFoundError(name, self.name)
        candidate = {k: v for k, v in self.services.items() if k != name}
        removed = self.services[name]
        self._commit(candidate)
        self.scale_policies.pop(name, None)
        return removed

    def get_service(self, name: str) -> ServiceDefinition:
        try:
            return self.services[name]
        except KeyError:
            raise ServiceNotFoundError(name, self.name) from None

    def service_names(self) -> List[str]:
        return list(self.services)

    def teardown_order(self) -> List[str]:
        return list(reversed(self.deployment_order))

    def set_scale_policy(
        self,
        service: str,
        replicas: int,
        strategy: Optional[ScaleStrategy] = None,
    ) -> ScalePolicy:
        if service not in self.services:
            raise ServiceNotFoundError(service, self.name)
        if replicas < 0:
            raise ConfigurationError(f"Replica count for '{service}' must not be negative")
        current = self.scale_policies.get(service)
        if strategy is None:
            strategy = current.strategy if current else ScaleStrategy.ROLLING_UPDATE
        policy = ScalePolicy(replicas=replicas, strategy=strategy)
        self.scale_policies[service] = policy
        return policy

    def get_scale_policy(self, service: str) -> Optional[ScalePolicy]:
        return self.scale_policies.get(service)

    def replicas_for(self, service: str) -> int:
        policy = self.scale_policies.get(service)
        return policy.replicas if policy else 1

    def service_networks(self, service: str) -> List[str]:
        """
        Logical networks a service attaches to; the implicit default network
        when it names none.
        """
        return list(self.services[service].networks) or [DEFAULT_NETWORK]

    def referenced_networks(self) -> List[str]:
        """
        The implicit default network followed by every network named by a service.
        """
        names = [DEFAULT_NETWORK]
        for svc in self.services.values():
            for network in svc.networks:
                if network not in names:
                    names.append(network)
        return names

    def named_volumes(self) -> List[str]:
        """
        Distinct named-volume sources across all services. Bind mounts are excluded.
        """
        names: List[str] = []
        for svc in self.services.values():
            for volume in svc.named_volumes():
                if volume not in names:
                    names.append(volume)
        return names
