"""
Typed memory tool requests.

A ToolCall is what the host agent loop hands over; the normalizer turns it
into exactly one of the request models below.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from role_memory.errors import MemoryValidationError
from role_memory.memory.schemas import GoalRecord, MemoryType, TraitRecord


class ToolName(str, Enum):
    ADD_EPISODIC = "add_episodic_memory"
    ADD_SEMANTIC = "add_semantic_memory"
    UPDATE_TRAITS = "update_traits"
    UPDATE_GOALS = "update_goals"
    SEARCH_MEMORIES = "search_memories"
    GET_STATS = "get_memory_stats"
    GET_RECENT = "get_recent_memories"
    CLEANUP = "cleanup_memories"


class ToolCall(BaseModel):
    """Raw tool invocation from the upstream model."""

    name: str = Field(..., description="Tool name, see ToolName")
    params: Any = Field(default_factory=dict, description="Payload in any accepted shape")
    partial: bool = Field(False, description="Call is still streaming")


class MemoryWrite(BaseModel):
    """Fields shared by both add tools."""

    content: str
    keywords: List[str] = Field(default_factory=list)
    priority: int = 60
    is_constant: bool = False
    tags: List[str] = Field(default_factory=list)
    source: str = "conversation"
    emotional_context: List[str] = Field(default_factory=list)
    related_topics: List[str] = Field(default_factory=list)

    # Role-play descriptors, kept as metadata
    perspective: Optional[str] = None
    context_type: Optional[str] = None
    memory_tone: Optional[str] = None
    game_state: Optional[str] = None
    ua_info: List[str] = Field(default_factory=list)

    original_length: int = 0
    truncated: bool = False
    user_message: Optional[str] = Field(None, description="Acknowledgement for the end user, never stored")


class AddEpisodic(MemoryWrite):
    tool: Literal["add_episodic_memory"] = "add_episodic_memory"


class AddSemantic(MemoryWrite):
    tool: Literal["add_semantic_memory"] = "add_semantic_memory"


class UpdateTraits(BaseModel):
    tool: Literal["update_traits"] = "update_traits"
    traits: List[TraitRecord]
    user_message: Optional[str] = None


class UpdateGoals(BaseModel):
    tool: Literal["update_goals"] = "update_goals"
    goals: List[GoalRecord]
    user_message: Optional[str] = None


class SearchMemories(BaseModel):
    tool: Literal["search_memories"] = "search_memories"
    search_text: str
    memory_types: List[MemoryType] = Field(default_factory=list)
    max_results: int = Field(10, ge=1)


class GetStats(BaseModel):
    tool: Literal["get_memory_stats"] = "get_memory_stats"


class GetRecentMemories(BaseModel):
    tool: Literal["get_recent_memories"] = "get_recent_memories"
    limit: int = Field(10, ge=1)
    memory_types: List[MemoryType] = Field(default_factory=list)


class CleanupMemories(BaseModel):
    tool: Literal["cleanup_memories"] = "cleanup_memories"
    max_age_days: Optional[float] = Field(30.0, ge=0.0)
    dry_run: bool = False


ToolRequest = Union[
    AddEpisodic,
    AddSemantic,
    UpdateTraits,
    UpdateGoals,
    SearchMemories,
    GetStats,
    GetRecentMemories,
    CleanupMemories,
]


class NormalizeResult(BaseModel):
    """
    Outcome of normalizing one ToolCall.

    status:
    - ok: `request` is set
    - pending: a partial call is not complete yet; retry when more arrives
    - invalid: `error` names what is wrong
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: Literal["ok", "pending", "invalid"]
    request: Optional[ToolRequest] = None
    error: Optional[MemoryValidationError] = None
    missing: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def pending(self) -> bool:
        return self.status == "pending"

    @classmethod
    def success(cls, request: Any) -> "NormalizeResult":
        return cls(status="ok", request=request)

    @classmethod
    def waiting(cls, missing: Optional[List[str]] = None) -> "NormalizeResult":
        return cls(status="pending", missing=missing or [])

    @classmethod
    def failure(cls, error: MemoryValidationError) -> "NormalizeResult":
        return cls(status="invalid", error=error, missing=list(getattr(error, "fields", [])))

    def describe(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "tool": getattr(self.request, "tool", None),
            "error": str(self.error) if self.error else None,
            "missing": self.missing,
        }
