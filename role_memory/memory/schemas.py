"""
Role memory data models.

Defines MemoryEntry, trait/goal records and the request/response shapes
shared by the store, the trigger engine and the tool dispatcher.
"""

import math
import re
import time
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

from role_memory.errors import MemoryValidationError, MissingRequiredField, OutOfRangeValue


# Metadata values are restricted to scalars so the persisted format stays checkable
MetadataValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]

_LIST_SPLIT = re.compile(r"[,，]")

PRIORITY_MIN = 0
PRIORITY_MAX = 100


class MemoryType(str, Enum):
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    TRAIT = "trait"
    GOAL = "goal"


class TriggerType(str, Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    TEMPORAL = "temporal"
    EMOTIONAL = "emotional"


SortKey = Literal["recency", "priority", "access", "created"]


# ============================================================================
# Coercion helpers
# ============================================================================

def split_list(value: Any) -> List[str]:
    """
    Turn a comma separated string or an iterable into a clean list.

    Items are trimmed, empties dropped and duplicates removed keeping the
    first occurrence. Both ASCII and full-width commas separate items.
    """
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = _LIST_SPLIT.split(value)
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = [value]

    seen = set()
    result = []
    for item in items:
        text = str(item).strip()
        if text and text not in seen:
            seen.add(text)
            result.append(text)
    return result


def coerce_priority(value: Any, default: int = 60) -> int:
    """
    Coerce a priority into [0, 100].

    Numbers and numeric strings are rounded and clamped; None or an empty
    string yields the default.

    Raises:
        OutOfRangeValue: value is not numeric
    """
    if value is None:
        return default
    if isinstance(value, bool):
        raise OutOfRangeValue("priority", value, "expected an integer")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return default
        try:
            number = float(text)
        except ValueError:
            raise OutOfRangeValue("priority", value, "expected an integer") from None

    if not math.isfinite(number):
        raise OutOfRangeValue("priority", value, "expected a finite number")

    return max(PRIORITY_MIN, min(PRIORITY_MAX, int(round(number))))


def coerce_bool(value: Any, default: bool = False) -> bool:
    """Booleans pass through; strings are true only when they read "true"."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip()
    if not text:
        return default
    return text.lower() == "true"


def new_memory_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Records
# ============================================================================

class MemoryEntry(BaseModel):
    """
    A single episodic or semantic memory owned by one role.

    `id` and `created_at` never change after creation; `last_accessed` and
    `access_count` only move forward.
    """

    id: str = Field(default_factory=new_memory_id, description="Unique identifier (UUID4)")
    type: MemoryType = Field(MemoryType.SEMANTIC, description="episodic or semantic")

    # Content
    content: str = Field(..., description="Memory text")
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    related_topics: List[str] = Field(default_factory=list)
    emotional_context: List[str] = Field(default_factory=list)
    trigger_type: TriggerType = TriggerType.KEYWORD

    # Ranking
    priority: int = Field(60, description="0-100, clamped")
    is_constant: bool = Field(False, description="Always injected, never evicted")
    relevance_weight: float = Field(0.9, ge=0.0, le=1.0)
    emotional_weight: float = Field(0.3, ge=0.0, le=1.0)
    time_decay_factor: float = Field(0.05, ge=0.0, le=1.0)

    # Bookkeeping
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    last_accessed: float = Field(default_factory=time.time)
    access_count: int = Field(0, ge=0)

    # Provenance
    source: str = "conversation"
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _entry_type(cls, value: MemoryType) -> MemoryType:
        if value not in (MemoryType.EPISODIC, MemoryType.SEMANTIC):
            raise ValueError("memory entries are episodic or semantic")
        return value

    @field_validator("content")
    @classmethod
    def _content_not_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content must not be empty")
        return value

    @field_validator("keywords", "tags", "related_topics", "emotional_context", mode="before")
    @classmethod
    def _clean_lists(cls, value: Any) -> List[str]:
        return split_list(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        try:
            return coerce_priority(value)
        except OutOfRangeValue as exc:
            raise ValueError(str(exc)) from None

    def topical_terms(self) -> List[str]:
        """Keywords, tags and related topics, deduplicated."""
        return split_list(self.keywords + self.tags + self.related_topics)

    def mark_accessed(self, now: Optional[float] = None) -> None:
        """Record one retrieval."""
        now = time.time() if now is None else now
        self.access_count += 1
        self.last_accessed = max(self.last_accessed, now)

    def snippet(self, max_chars: int = 100) -> str:
        """Get truncated content for display."""
        if len(self.content) <= max_chars:
            return self.content
        return self.content[:max_chars - 3] + "..."

    def to_storage_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        return cls.model_validate(data)


class TraitRecord(BaseModel):
    """A character trait, keyed by name within a role."""

    name: str
    value: str
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    priority: int = 70
    is_constant: bool = True
    keywords: List[str] = Field(default_factory=list)
    updated_at: float = Field(default_factory=time.time)

    @field_validator("name", "value")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, value: Any) -> List[str]:
        return split_list(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        try:
            return coerce_priority(value, default=70)
        except OutOfRangeValue as exc:
            raise ValueError(str(exc)) from None


class GoalRecord(BaseModel):
    """A character goal, keyed by id within a role."""

    id: str = ""
    value: str
    status: Literal["active", "completed", "abandoned"] = "active"
    priority: int = 60
    is_constant: bool = False
    keywords: List[str] = Field(default_factory=list)
    updated_at: float = Field(default_factory=time.time)

    @field_validator("value")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, value: Any) -> List[str]:
        return split_list(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        try:
            return coerce_priority(value, default=60)
        except OutOfRangeValue as exc:
            raise ValueError(str(exc)) from None


def entry_from_dict(data: Dict[str, Any]) -> MemoryEntry:
    """
    Validate a raw dict into a MemoryEntry using the memory error taxonomy.

    Raises:
        MissingRequiredField: content absent or blank
        OutOfRangeValue: priority or a weight outside its range
        MemoryValidationError: any other schema violation
    """
    try:
        return MemoryEntry.model_validate(data)
    except ValidationError as exc:
        raise convert_validation_error(exc, data) from None


def convert_validation_error(exc: ValidationError, data: Dict[str, Any]) -> MemoryValidationError:
    """Map the first pydantic error onto the memory error taxonomy."""
    missing = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else ""
        if field == "content" or error["type"] == "missing":
            missing.append(field or "content")
            continue
        return OutOfRangeValue(field, data.get(field), error["msg"])
    if missing:
        return MissingRequiredField(missing)
    return MemoryValidationError(str(exc))


# ============================================================================
# Queries and results
# ============================================================================

class MemoryFilter(BaseModel):
    """Administrative listing filter. Listing never touches access bookkeeping."""

    memory_types: List[MemoryType] = Field(default_factory=list, description="Empty means all")
    search: Optional[str] = Field(None, description="Substring matched against content and terms")
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None
    is_constant: Optional[bool] = None
    created_after: Optional[float] = None
    created_before: Optional[float] = None
    limit: int = Field(100, ge=1)
    sort_by: SortKey = "recency"

    def matches(self, entry: MemoryEntry) -> bool:
        if self.memory_types and entry.type not in self.memory_types:
            return False
        if self.priority_min is not None and entry.priority < self.priority_min:
            return False
        if self.priority_max is not None and entry.priority > self.priority_max:
            return False
        if self.is_constant is not None and entry.is_constant != self.is_constant:
            return False
        if self.created_after is not None and entry.created_at < self.created_after:
            return False
        if self.created_before is not None and entry.created_at > self.created_before:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [entry.content.lower()] + [t.lower() for t in entry.topical_terms()]
            if not any(needle in text for text in haystack):
                return False
        return True


class MemoryStats(BaseModel):
    """Aggregate view of one role's store."""

    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    constant_count: int = 0
    average_priority: float = 0.0
    oldest_created_at: Optional[float] = None
    newest_created_at: Optional[float] = None
    total_access_count: int = 0
    most_accessed: List[str] = Field(default_factory=list)
    trait_count: int = 0
    goal_count: int = 0


class BulkDeleteResult(BaseModel):
    """Outcome of removing several memories at once."""

    deleted: List[str] = Field(default_factory=list)
    kept_constant: List[str] = Field(default_factory=list, description="Constant entries left without force")
    not_found: List[str] = Field(default_factory=list)


class ImportReport(BaseModel):
    """Outcome of importing exported memory records into a role."""

    imported_ids: List[str] = Field(default_factory=list)
    renamed: Dict[str, str] = Field(default_factory=dict, description="Colliding id -> id it was stored under")
    errors: List[str] = Field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.imported_ids)


class RoleOverview(BaseModel):
    """Memory counts of one role, as shown in the all-roles overview."""

    count: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class ConversationSnapshot(BaseModel):
    """What the trigger engine sees of the current conversation."""

    role_id: str
    utterance: str = ""
    history: List[str] = Field(default_factory=list, description="Earlier turns, oldest first")
    emotional_state: Optional[str] = None
    context_keywords: List[str] = Field(default_factory=list)
    turn: int = Field(0, ge=0, description="Monotonic turn number within the role session")


class TriggerResult(BaseModel):
    """Selection produced by one trigger pass."""

    fragments: List[str] = Field(default_factory=list)
    matched_ids: List[str] = Field(default_factory=list)
    constant_content: str = ""
    triggered_content: str = ""
    full_content: str = ""
    injected_count: int = 0
    duration_ms: float = 0.0
    superseded: bool = False


class ToolResult(BaseModel):
    """Generic tool-result contract shared by every memory tool."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    pending: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)


class InjectionMetadata(BaseModel):
    """What one prompt injection used."""

    used_ids: List[str] = Field(default_factory=list)
    used_count: int = 0
    used_chars: int = 0
    memory_version: str = "none"
    superseded: bool = False
