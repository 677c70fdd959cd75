"""
Autopilot Configuration

Settings are read from environment variables and may be overlaid by a YAML
file named by AUTOPILOT_CONFIG. YAML keys use the same names as the Settings
fields. Unknown keys are rejected so a typo never silently falls back to a
default.

Environment variables:
- AUTOPILOT_DATA_DIR: root for checkpoints and logs (default data/autopilot)
- AUTOPILOT_WORKSPACE_ROOT: where task workspaces are created
- AUTOPILOT_CHECKPOINT_INTERVAL / _KEEP_RECENT / _MAX_PER_TASK / _MAX_AGE_SECONDS
- SHUTDOWN_TIMEOUT_MS: shutdown checkpoint budget in milliseconds
- AUTOPILOT_VERIFY_THRESHOLD: minimum confidence for a verified completion
- ANTHROPIC_API_KEY / AUTOPILOT_MODEL / AUTOPILOT_REASONING_URL
- TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID: optional Telegram notification channel
- AUTOPILOT_LOG_LEVEL / AUTOPILOT_AUTO_RESUME
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger("config")

CONFIG_FILE_ENV = "AUTOPILOT_CONFIG"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings for every autopilot service."""
    data_dir: Path = Path("data/autopilot")
    workspace_root: Path = Path("data/autopilot/workspaces")

    # Checkpointing
    checkpoint_interval: int = 10
    checkpoint_keep_recent: int = 20
    max_checkpoints_per_task: int = 5
    checkpoint_max_age_seconds: int = 3600

    # Shutdown
    shutdown_timeout_seconds: float = 30.0

    # Verification
    verify_threshold: float = 0.7
    probe_timeout_seconds: float = 10.0
    command_timeout_seconds: float = 120.0

    # Reasoning service
    anthropic_api_key: Optional[str] = None
    reasoning_model: str = "claude-sonnet-4-5"
    reasoning_url: str = "https://api.anthropic.com/v1/messages"
    reasoning_timeout_seconds: float = 120.0
    reasoning_max_tokens: int = 4096

    # Tools
    tool_timeout_seconds: float = 60.0

    # Notifications
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    log_level: str = "INFO"
    auto_resume: bool = True

    @property
    def checkpoint_dir(self) -> Path:
        return self.data_dir / "checkpoints"

    @property
    def notification_log(self) -> Path:
        return self.data_dir / "notifications.jsonl"

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = Path(os.getenv("AUTOPILOT_DATA_DIR", "data/autopilot"))
        return cls(
            data_dir=data_dir,
            workspace_root=Path(os.getenv("AUTOPILOT_WORKSPACE_ROOT", str(data_dir / "workspaces"))),
            checkpoint_interval=int(os.getenv("AUTOPILOT_CHECKPOINT_INTERVAL", "10")),
            checkpoint_keep_recent=int(os.getenv("AUTOPILOT_CHECKPOINT_KEEP_RECENT", "20")),
            max_checkpoints_per_task=int(os.getenv("AUTOPILOT_CHECKPOINT_MAX_PER_TASK", "5")),
            checkpoint_max_age_seconds=int(os.getenv("AUTOPILOT_CHECKPOINT_MAX_AGE_SECONDS", "3600")),
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT_MS", "30000")) / 1000.0,
            verify_threshold=float(os.getenv("AUTOPILOT_VERIFY_THRESHOLD", "0.7")),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            reasoning_model=os.getenv("AUTOPILOT_MODEL", "claude-sonnet-4-5"),
            reasoning_url=os.getenv("AUTOPILOT_REASONING_URL", "https://api.anthropic.com/v1/messages"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
            log_level=os.getenv("AUTOPILOT_LOG_LEVEL", "INFO").upper(),
            auto_resume=_env_bool("AUTOPILOT_AUTO_RESUME", True),
        )

    def apply_overrides(self, overrides: Dict[str, Any]) -> "Settings":
        """Return a copy with the given field values replaced."""
        known = {f.name: f for f in fields(self)}
        values = {name: getattr(self, name) for name in known}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigError(CONFIG_FILE_ENV, f"unknown setting '{key}'")
            if key in ("data_dir", "workspace_root"):
                value = Path(value)
            values[key] = value
        return Settings(**values)


def read_yaml_file(file_path: Path) -> dict:
    """Read and parse a YAML file."""
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(str(file_path), "top level must be a mapping")
    return data


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from the environment, then overlay the YAML file if any.

    Args:
        config_path: Explicit YAML path (defaults to $AUTOPILOT_CONFIG)
    """
    settings = Settings.from_env()
    if config_path is None and os.getenv(CONFIG_FILE_ENV):
        config_path = Path(os.environ[CONFIG_FILE_ENV])
    if config_path is None:
        return settings

    overrides = read_yaml_file(config_path)
    logger.info(f"Loaded {len(overrides)} setting(s) from {config_path}")
    return settings.apply_overrides(overrides)
