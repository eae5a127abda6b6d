"""Tests for Config loading and validation."""

import os
from pathlib import Path

import pytest

from abilitybot.config import Config
from abilitybot.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_BOT_USERNAME", "ABILITYBOT_CREATOR_ID",
                "TELEGRAM_API_URL"):
        monkeypatch.delenv(var, raising=False)


def write_settings(tmp_path, text):
    (tmp_path / "settings.yaml").write_text(text)
    return Config(config_dir=tmp_path)


class TestDefaults:

    def test_empty_config_dir(self, tmp_path):
        config = Config(config_dir=tmp_path)
        assert config.bot_token == ""
        assert config.creator_id is None
        assert config.poll_timeout == 25
        assert config.backup_filename == "backup.json"
        assert config.telegram_api_url == "https://api.telegram.org"
        assert config.logging_level == "INFO"
        assert config.logging_subsystem_levels == {}
        assert config.database_path.name == "abilitybot.db"


class TestSettings:

    def test_yaml_values(self, tmp_path):
        config = write_settings(tmp_path, (
            "bot_username: '@MyBot'\n"
            "creator_id: 99\n"
            "database_path: /tmp/x/store.db\n"
            "telegram_api_url: http://localhost:8081/\n"
            "backup:\n"
            "  filename: snapshot.json\n"
            "logging:\n"
            "  level: debug\n"
            "  subsystem_levels:\n"
            "    pipeline: DEBUG\n"
        ))
        assert config.bot_username == "MyBot"
        assert config.creator_id == 99
        assert config.database_path == Path("/tmp/x/store.db")
        assert config.telegram_api_url == "http://localhost:8081"
        assert config.backup_filename == "snapshot.json"
        assert config.logging_level == "debug"
        assert config.logging_subsystem_levels == {"pipeline": "DEBUG"}

    def test_env_takes_precedence(self, tmp_path, monkeypatch):
        config = write_settings(tmp_path, "bot_token: from-yaml\ncreator_id: 1\n")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
        monkeypatch.setenv("ABILITYBOT_CREATOR_ID", "2024")
        assert config.bot_token == "from-env"
        assert config.creator_id == 2024

    def test_non_numeric_creator_id(self, tmp_path):
        config = write_settings(tmp_path, "creator_id: someone\n")
        assert config.creator_id is None

    def test_dotenv_file_loaded(self, tmp_path):
        (tmp_path / ".env").write_text("TELEGRAM_BOT_USERNAME=envbot\n")
        config = Config(config_dir=tmp_path)
        assert config.bot_username == "envbot"
        os.environ.pop("TELEGRAM_BOT_USERNAME", None)


class TestValidate:

    def test_valid(self, tmp_path):
        config = write_settings(tmp_path, "bot_token: t\nbot_username: b\ncreator_id: 5\n")
        config.validate()

    @pytest.mark.parametrize("settings, missing", [
        ("bot_username: b\ncreator_id: 5\n", "bot_token"),
        ("bot_token: t\ncreator_id: 5\n", "bot_username"),
        ("bot_token: t\nbot_username: b\n", "creator_id"),
        ("bot_token: t\nbot_username: b\ncreator_id: -3\n", "creator_id"),
    ])
    def test_missing_required(self, tmp_path, settings, missing):
        config = write_settings(tmp_path, settings)
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()
        assert exc_info.value.setting_name == missing
