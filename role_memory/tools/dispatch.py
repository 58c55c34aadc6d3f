"""
Memory tool dispatch.

Routes normalized tool requests to the store, the eviction policy and the
search paths, and folds every outcome into the generic ToolResult contract.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from role_memory.config import NormalizerConfig
from role_memory.errors import MalformedPayload, RoleMemoryError, StorageIOError
from role_memory.memory.enrich import emotional_weight, extract_keywords, infer_trigger_type
from role_memory.memory.policy import EvictionPolicy
from role_memory.memory.schemas import MemoryEntry, MemoryFilter, MemoryType, ToolResult
from role_memory.memory.store import MemoryStore
from .normalizer import ArgumentNormalizer
from .requests import (
    AddEpisodic,
    AddSemantic,
    CleanupMemories,
    GetRecentMemories,
    GetStats,
    MemoryWrite,
    SearchMemories,
    ToolCall,
    UpdateGoals,
    UpdateTraits,
)


logger = logging.getLogger(__name__)

AWAITING_MESSAGE = "awaiting more data"
METADATA_VERSION = "1"

DESCRIPTOR_FIELDS = ("perspective", "context_type", "memory_tone", "game_state")


def entry_from_request(request: MemoryWrite) -> MemoryEntry:
    """
    Build a MemoryEntry from an add request, filling derived fields.

    Episodic entries weigh relevance 0.8, decay at 0.1 and get an emotional
    weight estimated from their text. Semantic entries weigh relevance 0.9,
    emotion 0.3, decay at 0.05 and use their tags as topics when none are
    given. Missing keywords are extracted from content.
    """
    keywords = request.keywords or extract_keywords(request.content)

    metadata: Dict[str, Any] = {
        "version": METADATA_VERSION,
        "original_length": request.original_length or len(request.content),
        "truncated": request.truncated,
    }
    for field in DESCRIPTOR_FIELDS:
        value = getattr(request, field)
        if value:
            metadata[field] = value
    if request.ua_info:
        metadata["ua_info"] = ",".join(request.ua_info)

    common = dict(
        content=request.content,
        keywords=keywords,
        tags=request.tags,
        emotional_context=request.emotional_context,
        trigger_type=infer_trigger_type(request.content, request.keywords),
        priority=request.priority,
        is_constant=request.is_constant,
        source=request.source,
        metadata=metadata,
    )

    if isinstance(request, AddEpisodic):
        return MemoryEntry(
            type=MemoryType.EPISODIC,
            related_topics=request.related_topics,
            relevance_weight=0.8,
            emotional_weight=emotional_weight(request.content, request.emotional_context),
            time_decay_factor=0.1,
            **common,
        )

    return MemoryEntry(
        type=MemoryType.SEMANTIC,
        related_topics=request.related_topics or request.tags,
        relevance_weight=0.9,
        emotional_weight=0.3,
        time_decay_factor=0.05,
        **common,
    )


def summarize_entry(entry: MemoryEntry) -> Dict[str, Any]:
    """Compact entry view returned to the upstream model."""
    return {
        "id": entry.id,
        "type": entry.type.value,
        "content": entry.content,
        "keywords": entry.keywords,
        "priority": entry.priority,
        "is_constant": entry.is_constant,
        "created_at": entry.created_at,
        "last_accessed": entry.last_accessed,
        "access_count": entry.access_count,
    }


class MemoryToolDispatcher:
    """
    Executes memory tool calls for a role.

    Validation problems come back as `success=False` with a short error so
    the upstream model can retry; partial calls come back as pending.
    """

    def __init__(
        self,
        store: MemoryStore,
        policy: EvictionPolicy,
        normalizer: Optional[ArgumentNormalizer] = None,
        config: Optional[NormalizerConfig] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            store: Memory store for the session
            policy: Eviction policy (also runs automatic cleanup after writes)
            normalizer: Argument normalizer; built from config when absent
            config: Normalizer configuration
        """
        self.store = store
        self.policy = policy
        self.normalizer = normalizer or ArgumentNormalizer(config)
        self.config = self.normalizer.config

    async def dispatch(self, role_id: str, call: Union[ToolCall, Dict[str, Any]]) -> ToolResult:
        """
        Normalize and execute one tool call.

        Args:
            role_id: Role whose memory the call targets
            call: ToolCall or its dict form

        Returns:
            ToolResult; never raises for payload or storage problems
        """
        if isinstance(call, dict):
            try:
                call = ToolCall.model_validate(call)
            except ValidationError as exc:
                first = exc.errors()[0]
                field = ".".join(str(part) for part in first["loc"]) or "call"
                error = MalformedPayload(f"unreadable tool call: {field}: {first['msg']}")
                logger.info(f"Rejected tool call for role {role_id}: {error}")
                return ToolResult(success=False, error=str(error))

        result = self.normalizer.normalize(call)
        if result.pending:
            logger.debug(f"{call.name} for role {role_id} pending: {result.missing}")
            return ToolResult(success=False, pending=True, message=AWAITING_MESSAGE)
        if not result.ok:
            logger.info(f"Rejected {call.name} for role {role_id}: {result.error}")
            return ToolResult(success=False, error=str(result.error))

        request = result.request
        try:
            return await self._execute(role_id, request)
        except StorageIOError as exc:
            logger.error(f"{call.name} for role {role_id} failed in storage: {exc}")
            return ToolResult(success=False, error=f"storage failure: {exc}")
        except RoleMemoryError as exc:
            logger.info(f"{call.name} for role {role_id} failed: {exc}")
            return ToolResult(success=False, error=str(exc))

    async def _execute(self, role_id: str, request: Any) -> ToolResult:
        if isinstance(request, (AddEpisodic, AddSemantic)):
            return await self._add(role_id, request)
        if isinstance(request, UpdateTraits):
            return await self._update_traits(role_id, request)
        if isinstance(request, UpdateGoals):
            return await self._update_goals(role_id, request)
        if isinstance(request, SearchMemories):
            return await self._search(role_id, request)
        if isinstance(request, GetStats):
            return await self._stats(role_id)
        if isinstance(request, GetRecentMemories):
            return await self._recent(role_id, request)
        if isinstance(request, CleanupMemories):
            return await self._cleanup(role_id, request)
        raise TypeError(f"Unhandled request type: {type(request).__name__}")

    # ========================================================================
    # Handlers
    # ========================================================================

    async def _add(self, role_id: str, request: MemoryWrite) -> ToolResult:
        entry = entry_from_request(request)
        stored, merged = await self.store.add_deduplicated(role_id, entry, self.config.dedupe_similarity)

        data: Dict[str, Any] = {
            "memory_id": stored.id,
            "type": stored.type.value,
            "merged": merged,
            "truncated": request.truncated,
        }

        report = await self.policy.maybe_cleanup(role_id)
        if report is not None:
            data["cleanup"] = {"removed_count": report.removed_count, "remaining": report.remaining}

        label = "Episodic" if stored.type == MemoryType.EPISODIC else "Semantic"
        return ToolResult(
            success=True,
            message=request.user_message or f"{label} memory saved",
            data=data,
        )

    async def _update_traits(self, role_id: str, request: UpdateTraits) -> ToolResult:
        traits = await self.store.upsert_traits(role_id, request.traits)
        return ToolResult(
            success=True,
            message=request.user_message or f"Updated {len(traits)} trait(s)",
            data={"traits": [t.name for t in traits], "count": len(traits)},
        )

    async def _update_goals(self, role_id: str, request: UpdateGoals) -> ToolResult:
        goals = await self.store.upsert_goals(role_id, request.goals)
        return ToolResult(
            success=True,
            message=request.user_message or f"Updated {len(goals)} goal(s)",
            data={"goal_ids": [g.id for g in goals], "count": len(goals)},
        )

    async def _search(self, role_id: str, request: SearchMemories) -> ToolResult:
        entries = await self.store.search(
            role_id,
            request.search_text,
            memory_types=request.memory_types,
            limit=request.max_results,
        )
        return ToolResult(
            success=True,
            message=f"Found {len(entries)} memor{'y' if len(entries) == 1 else 'ies'}",
            data={"memories": _summaries(entries), "count": len(entries)},
        )

    async def _stats(self, role_id: str) -> ToolResult:
        stats = await self.store.stats(role_id)
        return ToolResult(success=True, message=f"{stats.total} memories stored", data=stats.model_dump())

    async def _recent(self, role_id: str, request: GetRecentMemories) -> ToolResult:
        entries = await self.store.list(
            role_id,
            MemoryFilter(memory_types=request.memory_types, limit=request.limit, sort_by="created"),
        )
        return ToolResult(
            success=True,
            message=f"{len(entries)} recent memories",
            data={"memories": _summaries(entries), "count": len(entries)},
        )

    async def _cleanup(self, role_id: str, request: CleanupMemories) -> ToolResult:
        report = await self.policy.apply(
            role_id,
            dry_run=request.dry_run,
            max_age_days=request.max_age_days,
        )
        verb = "Would remove" if report.dry_run else "Removed"
        return ToolResult(
            success=True,
            message=f"{verb} {report.removed_count} memories, {report.remaining} remain",
            data=report.model_dump(),
        )


def _summaries(entries: List[MemoryEntry]) -> List[Dict[str, Any]]:
    return [summarize_entry(e) for e in entries]
