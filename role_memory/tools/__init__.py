"""
Memory tools exposed to the upstream model.

Provides:
- Tolerant XML tag extraction for tool payloads
- Argument normalizer that resolves direct, wrapped-object and XML shapes
- Dispatcher that executes normalized requests against a role's memory
"""

from .requests import (
    AddEpisodic,
    AddSemantic,
    CleanupMemories,
    GetRecentMemories,
    GetStats,
    NormalizeResult,
    SearchMemories,
    ToolCall,
    ToolName,
    UpdateGoals,
    UpdateTraits,
)
from .normalizer import ArgumentNormalizer, DirectFields, WrappedObject, WrappedXmlString
from .dispatch import MemoryToolDispatcher, entry_from_request

__all__ = [
    "AddEpisodic",
    "AddSemantic",
    "CleanupMemories",
    "GetRecentMemories",
    "GetStats",
    "NormalizeResult",
    "SearchMemories",
    "ToolCall",
    "ToolName",
    "UpdateGoals",
    "UpdateTraits",
    "ArgumentNormalizer",
    "DirectFields",
    "WrappedObject",
    "WrappedXmlString",
    "MemoryToolDispatcher",
    "entry_from_request",
]
