"""Role memory settings and configuration schema."""

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TriggerConfig(BaseModel):
    """Configuration for the trigger/ranking pass. Fixed for a session."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    score_threshold: float = Field(0.3, ge=0.0, description="Minimum score for non-constant memories")
    max_entries: int = Field(8, ge=0, description="Soft cap on injected memories per turn")
    max_total_chars: int = Field(2000, ge=0, description="Character budget for injected memories, constants included")
    decay_half_life_days: float = Field(7.0, gt=0.0)
    history_window: int = Field(3, ge=0, description="Recent turns matched alongside the utterance")
    temporal_window_days: float = Field(3.0, gt=0.0, description="Temporal memories this recent surface on time cues")
    include_character_state: bool = True
    separate_by_type: bool = True
    show_timestamps: bool = False
    debug: bool = False


class CleanupConfig(BaseModel):
    """Configuration for the eviction policy."""

    model_config = ConfigDict(frozen=True)

    max_entries: int = Field(500, ge=0, description="Store size above which cleanup runs")
    priority_floor: int = Field(20, ge=0, le=100)
    protect_priority: int = Field(80, ge=0, le=100, description="Age rule spares entries at or above this")
    auto_cleanup: bool = True


class NormalizerConfig(BaseModel):
    """Defaults applied while normalizing tool payloads."""

    model_config = ConfigDict(frozen=True)

    default_priority: int = Field(60, ge=0, le=100)
    default_source: str = "conversation"
    max_content_chars: int = Field(4000, gt=0)
    dedupe_similarity: float = Field(0.9, ge=0.0, le=1.0)
    max_user_message_chars: int = Field(200, gt=3)


class MemorySettings(BaseModel):
    """Main role memory settings."""

    db_path: str = "data/memory/role_memory.db"
    log_level: str = "INFO"
    trigger: TriggerConfig = TriggerConfig()
    cleanup: CleanupConfig = CleanupConfig()
    normalizer: NormalizerConfig = NormalizerConfig()

    @classmethod
    def from_env(cls, base: Optional["MemorySettings"] = None) -> "MemorySettings":
        """Build settings from ROLE_MEMORY_* environment variables."""
        settings = base or cls()
        updates = {}

        if "ROLE_MEMORY_DB_PATH" in os.environ:
            updates["db_path"] = os.environ["ROLE_MEMORY_DB_PATH"]
        if "ROLE_MEMORY_LOG_LEVEL" in os.environ:
            updates["log_level"] = os.environ["ROLE_MEMORY_LOG_LEVEL"]
        if "ROLE_MEMORY_MAX_ENTRIES" in os.environ:
            updates["cleanup"] = settings.cleanup.model_copy(
                update={"max_entries": int(os.environ["ROLE_MEMORY_MAX_ENTRIES"])}
            )
        if "ROLE_MEMORY_TRIGGER_DEBUG" in os.environ:
            debug = os.environ["ROLE_MEMORY_TRIGGER_DEBUG"].strip().lower() in ("1", "true", "yes")
            updates["trigger"] = settings.trigger.model_copy(update={"debug": debug})

        return settings.model_copy(update=updates)
