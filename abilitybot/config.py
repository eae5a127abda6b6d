"""Configuration management for abilitybot.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for every subsystem: Telegram transport, store,
backup, and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = structlog.get_logger("abilitybot.bot")


class Config:
    """Central configuration manager for abilitybot.

    Loads settings.yaml and .env from the config directory. Provides
    typed property accessors for every configurable subsystem.
    Environment variables take precedence over settings.yaml for the
    values that are usually secrets or deployment-specific.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        # Load environment variables
        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def validate(self):
        """Validate critical settings at startup.

        A missing bot token, bot username or creator id is fatal:
        without a creator the access lattice has no top element.
        Soft issues are logged only.

        Raises:
            ConfigurationError: If a required setting is missing or invalid.
        """
        if not self.bot_token:
            raise ConfigurationError(
                "Telegram bot token is not set", setting_name="bot_token"
            )
        if not self.bot_username:
            raise ConfigurationError(
                "Telegram bot username is not set", setting_name="bot_username"
            )
        creator_id = self.creator_id
        if creator_id is None or creator_id <= 0:
            raise ConfigurationError(
                "Creator id must be a positive integer", setting_name="creator_id"
            )

        timeout = self.settings.get("poll_timeout")
        if timeout is not None and (not isinstance(timeout, int) or timeout < 0):
            logger.error(
                "config_invalid_value",
                key="poll_timeout",
                value=timeout,
                valid=">= 0",
            )

    @property
    def bot_token(self) -> str:
        """Telegram bot token. Env var TELEGRAM_BOT_TOKEN takes precedence."""
        return os.environ.get("TELEGRAM_BOT_TOKEN") or self.settings.get("bot_token", "")

    @property
    def bot_username(self) -> str:
        """Bot username without the leading @. Env var TELEGRAM_BOT_USERNAME takes precedence."""
        username = (
            os.environ.get("TELEGRAM_BOT_USERNAME")
            or self.settings.get("bot_username", "")
        )
        return username.lstrip("@")

    @property
    def creator_id(self) -> Optional[int]:
        """Telegram user id of the bot's creator.

        Env var ABILITYBOT_CREATOR_ID takes precedence. Returns None
        when unset or not an integer.
        """
        raw = os.environ.get("ABILITYBOT_CREATOR_ID") or self.settings.get("creator_id")
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.error("creator_id_invalid_type", value=str(raw))
            return None

    @property
    def telegram_api_url(self) -> str:
        """Get Telegram Bot API base URL. Env var TELEGRAM_API_URL takes precedence."""
        return (
            os.environ.get("TELEGRAM_API_URL")
            or self.settings.get("telegram_api_url", "https://api.telegram.org")
        ).rstrip("/")

    @property
    def poll_timeout(self) -> int:
        """Long-polling timeout in seconds for getUpdates (default 25)."""
        return self.settings.get("poll_timeout", 25)

    @property
    def database_path(self) -> Path:
        """Path of the SQLite store file."""
        configured = self.settings.get("database_path")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "data" / "abilitybot.db"

    @property
    def backup_filename(self) -> str:
        """File name used when sending a backup document (default backup.json)."""
        backup_config = self.settings.get("backup", {})
        return backup_config.get("filename", "backup.json")

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"pipeline": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
