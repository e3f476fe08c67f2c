"""
Unit tests for deployment order resolution.
"""
import random

import pytest

from stackpilot.errors import ConfigurationError
from stackpilot.MODELS.service_definition import ServiceDefinition
from stackpilot.RUNNERS.dependency_resolver import DependencyResolver


def services(**edges):
    return {name: ServiceDefinition(name=name, depends_on=deps) for name, deps in edges.items()}


def assert_topological(order, graph):
    position = {name: index for index, name in enumerate(order)}
    for name, svc in graph.items():
        for dep in svc.depends_on:
            assert position[dep] < position[name], f"{dep} must come before {name}"


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_dependency_first(self):
        """Test that db is started before web."""
        order = DependencyResolver().resolve_order(services(db=[], web=["db"]))
        assert order == ["db", "web"]

    def test_declaration_order_does_not_matter(self):
        order = DependencyResolver().resolve_order(services(web=["db"], db=[]))
        assert order == ["db", "web"]

    def test_independent_services_keep_insertion_order(self):
        order = DependencyResolver().resolve_order(services(c=[], a=[], b=[]))
        assert order == ["c", "a", "b"]

    def test_diamond(self):
        graph = services(api=["db", "cache"], db=[], cache=[], web=["api"], worker=["db"])
        order = DependencyResolver().resolve_order(graph)
        assert_topological(order, graph)
        assert len(order) == 5

    def test_two_service_cycle(self):
        """Test that mutually dependent services are rejected."""
        with pytest.raises(ConfigurationError, match="Circular dependency detected"):
            DependencyResolver().resolve_order(services(service1=["service2"], service2=["service1"]))

    def test_cycle_names_remainder(self):
        graph = services(base=[], a=["base", "c"], b=["a"], c=["b"])
        with pytest.raises(ConfigurationError) as excinfo:
            DependencyResolver().resolve_order(graph)
        message = str(excinfo.value)
        assert "a, b, c" in message
        assert "base" not in message

    def test_self_dependency(self):
        with pytest.raises(ConfigurationError, match="Circular dependency"):
            DependencyResolver().resolve_order(services(loop=["loop"]))

    def test_missing_dependency(self):
        """Test that the error names both services."""
        with pytest.raises(ConfigurationError, match="Service 'web' depends on 'db' which is not defined"):
            DependencyResolver().resolve_order(services(web=["db"]))

    def test_idempotent(self):
        graph = services(a=[], b=["a"], c=["a"], d=["b", "c"])
        resolver = DependencyResolver()
        assert resolver.resolve_order(graph) == resolver.resolve_order(graph)

    def test_shutdown_order_is_reverse(self):
        graph = services(a=[], b=["a"], c=["b"])
        resolver = DependencyResolver()
        assert resolver.shutdown_order(graph) == list(reversed(resolver.resolve_order(graph)))

    def test_dependents_of(self):
        graph = services(db=[], cache=[], api=["db"], web=["api", "cache"], admin=["cache"])
        assert DependencyResolver().dependents_of(graph, "db") == ["api", "web"]

    def test_random_acyclic_graphs(self):
        """Test random DAGs: every edge points backwards in the order."""
        rng = random.Random(7)
        for _ in range(50):
            names = [f"s{i}" for i in range(rng.randint(1, 12))]
            edges = {}
            for index, name in enumerate(names):
                edges[name] = rng.sample(names[:index], rng.randint(0, index)) if index else []
            shuffled = dict(rng.sample(list(edges.items()), len(edges)))
            graph = services(**shuffled)
            order = DependencyResolver().resolve_order(graph)
            assert sorted(order) == sorted(names)
            assert_topological(order, graph)
