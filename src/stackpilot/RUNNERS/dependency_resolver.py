"""
Dependency resolution for services to determine startup and shutdown order.
"""
from collections import deque
from typing import Dict, List, Mapping

from ..errors import ConfigurationError
from ..MODELS.service_definition import ServiceDefinition


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def resolve_order(self, services: Mapping[str, ServiceDefinition]) -> List[str]:
        """
        Determines the order to start services using Kahn's algorithm.

        Services that become ready at the same time keep their insertion order,
        so resolving an unchanged mapping always yields the same sequence.

        :param services: Service definitions keyed by name.
        :return: Service names in the order they should be started.
        :raises ConfigurationError: If a dependency is undefined or the graph has a cycle.
        """
        dependencies: Dict[str, List[str]] = {name: [] for name in services}
        dependents: Dict[str, List[str]] = {name: [] for name in services}

        for name, svc in services.items():
            for dep in svc.depends_on:
                if dep not in services:
                    raise ConfigurationError(
                        f"Service '{name}' depends on '{dep}' which is not defined"
                    )
                dependencies[name].append(dep)
                dependents[dep].append(name)

        in_degree = {name: len(deps) for name, deps in dependencies.items()}
        queue = deque(name for name in services if in_degree[name] == 0)

        ordered = []
        while queue:
            name = queue.popleft()
            ordered.append(name)
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(ordered) != len(services):
            remainder = [name for name in services if name not in ordered]
            raise ConfigurationError(
                f"Circular dependency detected among services: {', '.join(remainder)}"
            )
        return ordered

    def shutdown_order(self, services: Mapping[str, ServiceDefinition]) -> List[str]:
        """
        The exact reverse of the startup order.
        """
        return list(reversed(self.resolve_order(services)))

    def dependents_of(self, services: Mapping[str, ServiceDefinition], name: str) -> List[str]:
        """
        Returns every service that directly or transitively depends on ``name``,
        in startup order.
        """
        affected = {name}
        result = []
        for candidate in self.resolve_order(services):
            if candidate == name:
                continue
            if any(dep in affected for dep in services[candidate].depends_on):
                affected.add(candidate)
                result.append(candidate)
        return result
