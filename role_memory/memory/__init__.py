"""
Role memory subsystem.

Provides:
- Episodic and semantic memory entries, traits and goals per role
- Async per-role store on SQLite
- Trigger engine that picks memories to inject into the prompt
- Eviction policy that bounds store growth
"""

from .schemas import (
    ConversationSnapshot,
    GoalRecord,
    InjectionMetadata,
    MemoryEntry,
    MemoryFilter,
    MemoryStats,
    MemoryType,
    ToolResult,
    TraitRecord,
    TriggerResult,
    TriggerType,
)
from .store import MemoryStore
from .recall import TriggerEngine, decay
from .policy import CleanupReport, EvictionPolicy
from .integrate import MemoryIntegration, create_memory_integration

__all__ = [
    "ConversationSnapshot",
    "GoalRecord",
    "InjectionMetadata",
    "MemoryEntry",
    "MemoryFilter",
    "MemoryStats",
    "MemoryType",
    "ToolResult",
    "TraitRecord",
    "TriggerResult",
    "TriggerType",
    "MemoryStore",
    "TriggerEngine",
    "decay",
    "CleanupReport",
    "EvictionPolicy",
    "MemoryIntegration",
    "create_memory_integration",
]
