"""
Unit tests for environment merging.
"""
import pytest

from stackpilot.errors import ConfigurationError
from stackpilot.MANAGERS.environment_manager import EnvironmentManager


class TestEnvironmentManager:
    """Tests for EnvironmentManager."""

    def test_load_env_file(self, tmp_path):
        (tmp_path / "web.env").write_text("# comment\nMODE=prod\nEMPTY=\nQUOTED=\"a b\"\n")
        env = EnvironmentManager(str(tmp_path)).load_env_file("web.env")
        assert env == {"MODE": "prod", "EMPTY": "", "QUOTED": "a b"}

    def test_missing_env_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="missing.env"):
            EnvironmentManager(str(tmp_path)).load_env_file("missing.env")

    def test_explicit_environment_wins(self, tmp_path):
        """Test precedence: later files override earlier ones, explicit values override files."""
        (tmp_path / "a.env").write_text("A=1\nB=1\nC=1\n")
        (tmp_path / "b.env").write_text("B=2\nC=2\n")
        env = EnvironmentManager(str(tmp_path)).get_merged_environment({"C": "3"}, ["a.env", "b.env"])
        assert env == {"A": "1", "B": "2", "C": "3"}

    def test_host_environment_is_not_inherited(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOST_ONLY", "x")
        env = EnvironmentManager(str(tmp_path)).get_merged_environment({"A": "1"}, [])
        assert env == {"A": "1"}
