"""
Unit Tests for Configuration

Covers environment parsing and the YAML overlay.
"""

from pathlib import Path

import pytest

from autopilot.config import CONFIG_FILE_ENV, Settings, load_settings, read_yaml_file
from autopilot.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        CONFIG_FILE_ENV,
        "AUTOPILOT_DATA_DIR",
        "AUTOPILOT_WORKSPACE_ROOT",
        "SHUTDOWN_TIMEOUT_MS",
        "AUTOPILOT_AUTO_RESUME",
        "AUTOPILOT_LOG_LEVEL",
        "TELEGRAM_BOT_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


# -----------------------------------------------------------------------------
# Environment Tests
# -----------------------------------------------------------------------------
class TestEnvironment:
    """Settings.from_env()"""

    def test_defaults(self):
        settings = Settings.from_env()
        assert settings.data_dir == Path("data/autopilot")
        assert settings.workspace_root == Path("data/autopilot/workspaces")
        assert settings.shutdown_timeout_seconds == 30.0
        assert settings.auto_resume is True
        assert settings.checkpoint_dir == Path("data/autopilot/checkpoints")

    def test_shutdown_timeout_in_milliseconds(self, monkeypatch):
        monkeypatch.setenv("SHUTDOWN_TIMEOUT_MS", "2500")
        assert Settings.from_env().shutdown_timeout_seconds == 2.5

    def test_workspace_root_follows_data_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AUTOPILOT_DATA_DIR", str(tmp_path))
        assert Settings.from_env().workspace_root == tmp_path / "workspaces"

    @pytest.mark.parametrize("raw,expected", [("false", False), ("0", False), ("yes", True), ("ON", True)])
    def test_auto_resume_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("AUTOPILOT_AUTO_RESUME", raw)
        assert Settings.from_env().auto_resume is expected

    def test_log_level_uppercased(self, monkeypatch):
        monkeypatch.setenv("AUTOPILOT_LOG_LEVEL", "debug")
        assert Settings.from_env().log_level == "DEBUG"


# -----------------------------------------------------------------------------
# YAML Overlay Tests
# -----------------------------------------------------------------------------
class TestYamlOverlay:
    """load_settings() with a config file."""

    def test_overlay_from_env_path(self, monkeypatch, tmp_path):
        config_file = tmp_path / "autopilot.yaml"
        config_file.write_text(
            "checkpoint_interval: 4\n"
            "verify_threshold: 0.9\n"
            f"data_dir: {tmp_path / 'data'}\n"
        )
        monkeypatch.setenv(CONFIG_FILE_ENV, str(config_file))

        settings = load_settings()

        assert settings.checkpoint_interval == 4
        assert settings.verify_threshold == 0.9
        assert settings.data_dir == tmp_path / "data"
        assert isinstance(settings.data_dir, Path)

    def test_explicit_path_wins(self, tmp_path):
        config_file = tmp_path / "explicit.yaml"
        config_file.write_text("auto_resume: false\n")
        assert load_settings(config_file).auto_resume is False

    def test_unknown_key_rejected(self, tmp_path):
        config_file = tmp_path / "typo.yaml"
        config_file.write_text("checkpoint_intervall: 4\n")
        with pytest.raises(ConfigError, match="checkpoint_intervall"):
            load_settings(config_file)

    def test_non_mapping_rejected(self, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            read_yaml_file(config_file)

    def test_empty_file_is_no_overrides(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert load_settings(config_file) == Settings.from_env()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_yaml_file(tmp_path / "missing.yaml")
