"""Unit test for settings configuration."""

import pytest
from pydantic import ValidationError

from role_memory.config.settings import CleanupConfig, MemorySettings, TriggerConfig


def test_default_settings():
    """Test that default settings are correctly configured."""
    settings = MemorySettings()
    assert settings.db_path == "data/memory/role_memory.db"
    assert settings.trigger.score_threshold == 0.3
    assert settings.trigger.max_entries == 8
    assert settings.cleanup.max_entries == 500
    assert settings.cleanup.priority_floor == 20
    assert settings.normalizer.max_content_chars == 4000


def test_trigger_config_is_frozen():
    config = TriggerConfig()
    with pytest.raises(ValidationError):
        config.max_entries = 3


def test_cleanup_config_validates_ranges():
    with pytest.raises(ValidationError):
        CleanupConfig(priority_floor=120)


def test_from_env(monkeypatch):
    monkeypatch.setenv("ROLE_MEMORY_DB_PATH", "/tmp/roles.db")
    monkeypatch.setenv("ROLE_MEMORY_MAX_ENTRIES", "50")
    monkeypatch.setenv("ROLE_MEMORY_TRIGGER_DEBUG", "true")
    monkeypatch.setenv("ROLE_MEMORY_LOG_LEVEL", "DEBUG")

    settings = MemorySettings.from_env()

    assert settings.db_path == "/tmp/roles.db"
    assert settings.cleanup.max_entries == 50
    assert settings.cleanup.priority_floor == 20
    assert settings.trigger.debug is True
    assert settings.log_level == "DEBUG"


def test_from_env_without_variables(monkeypatch):
    for name in ("ROLE_MEMORY_DB_PATH", "ROLE_MEMORY_MAX_ENTRIES", "ROLE_MEMORY_TRIGGER_DEBUG", "ROLE_MEMORY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    assert MemorySettings.from_env() == MemorySettings()
