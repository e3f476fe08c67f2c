"""
Unit tests for the volume manager.
"""
import os

from stackpilot.MANAGERS.volume_manager import VOLUME_LABEL, VolumeManager
from stackpilot.MODELS.runtime_state import OperationReport, StackRuntimeState
from stackpilot.MODELS.service_definition import ServiceDefinition, VolumeMount
from stackpilot.MODELS.stack_definition import StackDefinition


def make_service():
    return (
        ServiceDefinition(name="db", image_name="postgres")
        .with_volume("pgdata:/var/lib/postgresql/data")
        .with_volume("./init:/docker-entrypoint-initdb.d:ro")
        .with_volume("/tmp/scratch")
    )


class TestVolumeManager:
    """Tests for VolumeManager."""

    def test_ensure_creates_named_volumes_only(self, fake_client, tmp_path):
        """Test that bind mounts are not pre-created."""
        definition = StackDefinition(name="shop", volumes={"pgdata": {"driver": "local"}})
        definition.add_service(make_service())
        state = StackRuntimeState()
        VolumeManager(fake_client, "shop", str(tmp_path)).ensure_volumes(definition, state)
        assert fake_client.calls_to("create_volume") == ["shop_pgdata"]
        assert state.volumes == {"pgdata": "shop_pgdata"}
        assert fake_client.volumes["shop_pgdata"].labels[VOLUME_LABEL] == "pgdata"

    def test_resolve_named_volume(self, fake_client, tmp_path):
        vm = VolumeManager(fake_client, "shop", str(tmp_path))
        state = StackRuntimeState(volumes={"pgdata": "shop_pgdata"})
        assert vm.resolve_source(VolumeMount(source="pgdata", target="/d"), state) == "shop_pgdata"
        assert vm.resolve_source(VolumeMount(source="other", target="/d"), state) == "shop_other"

    def test_resolve_relative_bind(self, fake_client, tmp_path):
        """Test that relative sources resolve against the project directory."""
        vm = VolumeManager(fake_client, "shop", str(tmp_path))
        path = vm.resolve_source(VolumeMount(source="./data", target="/d"), StackRuntimeState())
        assert path == os.path.join(str(tmp_path), "data")

    def test_resolve_absolute_and_home(self, fake_client, tmp_path):
        vm = VolumeManager(fake_client, "shop", str(tmp_path))
        state = StackRuntimeState()
        assert vm.resolve_source(VolumeMount(source="/srv/www", target="/d"), state) == "/srv/www"
        home = vm.resolve_source(VolumeMount(source="~/data", target="/d"), state)
        assert home == os.path.join(os.path.expanduser("~"), "data")

    def test_container_binds(self, fake_client, tmp_path):
        vm = VolumeManager(fake_client, "shop", str(tmp_path))
        state = StackRuntimeState(volumes={"pgdata": "shop_pgdata"})
        binds = vm.container_binds(make_service(), state)
        assert binds == [
            "shop_pgdata:/var/lib/postgresql/data:rw",
            f"{os.path.join(str(tmp_path), 'init')}:/docker-entrypoint-initdb.d:ro",
        ]
        assert vm.anonymous_volumes(make_service()) == ["/tmp/scratch"]

    def test_remove_is_best_effort(self, fake_client, tmp_path):
        vm = VolumeManager(fake_client, "shop", str(tmp_path))
        fake_client.create_volume("shop_a")
        fake_client.create_volume("shop_b")
        state = StackRuntimeState(volumes={"a": "shop_a", "b": "shop_b"})
        fake_client.fail("remove_volume", "shop_a")
        report = OperationReport()
        vm.remove_volumes(state, report)
        assert report.removed_volumes == ["b"]
        assert len(report.suppressed) == 1
        assert state.volumes == {}
