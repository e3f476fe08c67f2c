"""
Unit tests for service definitions and their value types.
"""
import pytest
from pydantic import ValidationError

from stackpilot.MODELS.service_definition import (
    BuildConfig,
    PortMapping,
    RestartPolicyCondition,
    ServiceDefinition,
    VolumeMount,
)


class TestImageAndBuild:
    """Tests for the image/build exclusivity."""

    def test_with_image_clears_build(self):
        """Test that setting an image drops the build context."""
        svc = ServiceDefinition(name="app").with_build("./app").with_image("app:1.0")
        assert svc.image_name == "app:1.0"
        assert svc.build is None

    def test_with_build_clears_image(self):
        """Test that setting a build context drops the image."""
        svc = ServiceDefinition(name="app", image_name="app:1.0").with_build("./app", dockerfile="Dockerfile.dev")
        assert svc.image_name is None
        assert svc.build.context == "./app"
        assert svc.build.dockerfile == "Dockerfile.dev"
        assert svc.requires_build

    def test_alternating_never_sets_both(self):
        """Test that any sequence of image/build calls leaves at most one set."""
        svc = ServiceDefinition(name="app")
        for step in range(6):
            svc = svc.with_image(f"app:{step}") if step % 2 else svc.with_build(f"./ctx{step}")
            assert not (svc.image_name and svc.build is not None)

    def test_build_arg_switches_to_build(self):
        svc = ServiceDefinition(name="app", image_name="app").with_build_arg("VERSION", "2")
        assert svc.image_name is None
        assert svc.build.args == {"VERSION": "2"}

    def test_constructor_rejects_both(self):
        """Test that the model validator rejects image and build together."""
        with pytest.raises(ValidationError):
            ServiceDefinition(name="app", image_name="app", build=BuildConfig(context="."))


class TestServiceDefinition:
    """Tests for ServiceDefinition."""

    def test_defaults(self):
        svc = ServiceDefinition(name="web")
        assert svc.depends_on == []
        assert svc.restart_policy.condition == RestartPolicyCondition.NO
        assert svc.health_check is None
        assert svc.resource_limits.is_empty()
        assert not svc.has_source

    def test_invalid_name(self):
        """Test that names must start with an alphanumeric character."""
        with pytest.raises(ValidationError):
            ServiceDefinition(name="-web")
        with pytest.raises(ValidationError):
            ServiceDefinition(name="")

    def test_frozen(self):
        """Test that a definition cannot be modified in place."""
        svc = ServiceDefinition(name="web")
        with pytest.raises(ValidationError):
            svc.name = "api"

    def test_with_methods_return_copies(self):
        """Test that builder methods leave the original untouched."""
        original = ServiceDefinition(name="web", image_name="nginx")
        changed = original.with_env("MODE", "prod").with_port("8080:80").with_dependency("db")
        assert original.environment == {}
        assert original.ports == []
        assert original.depends_on == []
        assert changed.environment == {"MODE": "prod"}
        assert changed.ports == [PortMapping(target=80, published=8080)]
        assert changed.depends_on == ["db"]

    def test_dependencies_are_unique(self):
        svc = ServiceDefinition(name="web", depends_on=["db", "cache", "db"])
        assert svc.depends_on == ["db", "cache"]
        assert svc.with_dependency("db").depends_on == ["db", "cache"]
        assert svc.without_dependency("db").depends_on == ["cache"]

    def test_networks_are_unique(self):
        svc = ServiceDefinition(name="web").with_network("front").with_network("front")
        assert svc.networks == ["front"]

    def test_environment_values_become_strings(self):
        svc = ServiceDefinition(name="web").with_environment({"PORT": 8080, "DEBUG": "1"})
        assert svc.environment == {"PORT": "8080", "DEBUG": "1"}

    def test_with_resources_merges(self):
        svc = ServiceDefinition(name="web").with_resources(memory="512m").with_resources(cpus=0.5)
        assert svc.resource_limits.memory == "512m"
        assert svc.resource_limits.cpus == 0.5

    def test_with_restart_policy(self):
        svc = ServiceDefinition(name="web").with_restart_policy("on-failure", max_retries=3)
        assert svc.restart_policy.condition == RestartPolicyCondition.ON_FAILURE
        assert svc.restart_policy.max_retries == 3

    def test_with_health_check(self):
        svc = ServiceDefinition(name="web").with_health_check(["CMD", "true"], interval=5, retries=2)
        assert svc.health_check.test == ["CMD", "true"]
        assert svc.health_check.interval == 5
        assert svc.health_check.retries == 2

    def test_named_volumes(self):
        svc = (
            ServiceDefinition(name="db")
            .with_volume("data:/var/lib/data")
            .with_volume("./conf:/etc/conf:ro")
            .with_volume("/cache")
            .with_volume("data:/backup")
        )
        assert svc.named_volumes() == ["data"]

    def test_clone_with_name(self):
        original = ServiceDefinition(name="worker", image_name="app").with_env("QUEUE", "a")
        clone = original.clone_with_name("worker-2")
        assert clone.name == "worker-2"
        assert clone.image_name == "app"
        assert clone.environment == {"QUEUE": "a"}
        assert original.name == "worker"

    def test_convenience_constructors(self):
        redis = ServiceDefinition.redis_service("cache")
        assert redis.image_name == "redis:7-alpine"
        assert redis.ports == [PortMapping(target=6379, published=6379)]
        assert redis.labels["service.type"] == "cache"

        web = ServiceDefinition.web_service("web")
        assert web.restart_policy.condition == RestartPolicyCondition.UNLESS_STOPPED
        assert web.labels["service.type"] == "web"
        assert ServiceDefinition.database_service("db").labels["service.type"] == "database"


class TestPortMapping:
    """Tests for PortMapping."""

    @pytest.mark.parametrize("spec, expected", [
        ("8080:80", PortMapping(target=80, published=8080)),
        ("80", PortMapping(target=80)),
        (443, PortMapping(target=443)),
        ("53:53/udp", PortMapping(target=53, published=53, protocol="udp")),
        ("127.0.0.1:8080:80", PortMapping(target=80, published=8080, host_ip="127.0.0.1")),
    ])
    def test_parse(self, spec, expected):
        assert PortMapping.parse(spec) == expected

    def test_str_uses_short_syntax(self):
        assert str(PortMapping.parse("127.0.0.1:8080:80/udp")) == "127.0.0.1:8080:80/udp"
        assert str(PortMapping.parse("80")) == "80"

    def test_str_keeps_host_ip_without_published_port(self):
        mapping = PortMapping.parse("127.0.0.1::80")
        assert mapping == PortMapping(target=80, host_ip="127.0.0.1")
        assert str(mapping) == "127.0.0.1::80"
        assert PortMapping.parse(str(mapping)) == mapping

    def test_invalid(self):
        with pytest.raises(ValueError):
            PortMapping.parse("http:80")
        with pytest.raises(ValueError):
            PortMapping.parse("70000")


class TestVolumeMount:
    """Tests for VolumeMount."""

    def test_named_volume(self):
        mount = VolumeMount.parse("db_data:/var/lib/postgresql/data")
        assert mount.source == "db_data"
        assert mount.is_named_volume
        assert not mount.is_bind_mount
        assert not mount.read_only

    def test_bind_mount_read_only(self):
        mount = VolumeMount.parse("./config:/etc/app:ro")
        assert mount.is_bind_mount
        assert mount.read_only
        assert str(mount) == "./config:/etc/app:ro"

    def test_anonymous_volume(self):
        mount = VolumeMount.parse("/var/cache")
        assert mount.source == ""
        assert mount.target == "/var/cache"
        assert not mount.is_named_volume
        assert str(mount) == "/var/cache"

    def test_invalid(self):
        with pytest.raises(ValueError):
            VolumeMount.parse("a:b:c:d")
