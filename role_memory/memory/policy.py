"""
Memory eviction policy.

Bounds a role's store by removing low-value, non-constant memories.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from role_memory.config import CleanupConfig
from role_memory.telemetry import log_step, new_run_id
from .schemas import MemoryEntry
from .store import MemoryStore


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


class CleanupReport(BaseModel):
    """Outcome of one cleanup pass."""

    role_id: str
    removed_ids: List[str] = Field(default_factory=list)
    removed_count: int = 0
    remaining: int = 0
    criteria: Dict[str, Any] = Field(default_factory=dict, description="Thresholds applied")
    reasons: Dict[str, str] = Field(default_factory=dict, description="memory id -> rule that removed it")
    dry_run: bool = False


class EvictionPolicy:
    """
    Eviction rules, applied in order:
    - age: non-constant, below `protect_priority`, not accessed for `max_age_days`
      (only when an age is requested)
    - priority_floor: every non-constant below `priority_floor`
    - capacity: least recently accessed first (ties: lower priority, older
      update) until the role holds at most `max_entries`

    Constant entries are never victims.
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[CleanupConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.config = config or CleanupConfig()
        self.clock = clock or store.clock

    def criteria(
        self,
        max_age_days: Optional[float] = None,
        max_entries: Optional[int] = None,
        priority_floor: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Resolve per-call overrides against the configured thresholds."""
        return {
            "max_entries": self.config.max_entries if max_entries is None else max_entries,
            "priority_floor": self.config.priority_floor if priority_floor is None else priority_floor,
            "protect_priority": self.config.protect_priority,
            "max_age_days": max_age_days,
        }

    def select_victims(
        self,
        entries: Sequence[MemoryEntry],
        now: float,
        criteria: Dict[str, Any],
    ) -> Dict[str, str]:
        """
        Decide which entries to remove without touching the store.

        Args:
            entries: Every entry of one role
            now: Current unix time
            criteria: Output of `criteria()`

        Returns:
            Ordered mapping of victim id to the rule that selected it
        """
        victims: Dict[str, str] = {}
        candidates = [e for e in entries if not e.is_constant]

        max_age_days = criteria.get("max_age_days")
        if max_age_days is not None:
            cutoff = now - max_age_days * SECONDS_PER_DAY
            for entry in candidates:
                if entry.priority < criteria["protect_priority"] and entry.last_accessed < cutoff:
                    victims[entry.id] = "age"

        for entry in candidates:
            if entry.id not in victims and entry.priority < criteria["priority_floor"]:
                victims[entry.id] = "priority_floor"

        remaining = len(entries) - len(victims)
        overflow = remaining - criteria["max_entries"]
        if overflow > 0:
            survivors = [e for e in candidates if e.id not in victims]
            survivors.sort(key=lambda e: (e.last_accessed, e.priority, e.updated_at))
            for entry in survivors[:overflow]:
                victims[entry.id] = "capacity"

        return victims

    async def apply(
        self,
        role_id: str,
        dry_run: bool = False,
        max_age_days: Optional[float] = None,
        max_entries: Optional[int] = None,
        priority_floor: Optional[int] = None,
    ) -> CleanupReport:
        """
        Run one cleanup pass for a role.

        Selection and removal happen in one serialized store step. A dry run
        reports what would be removed and removes nothing.

        Returns:
            CleanupReport with removed ids, reasons and the criteria used
        """
        start = time.perf_counter()
        criteria = self.criteria(max_age_days, max_entries, priority_floor)
        now = self.clock()
        planned: Dict[str, str] = {}
        seen = {"total": 0}

        def selector(entries: List[MemoryEntry]) -> List[str]:
            seen["total"] = len(entries)
            planned.update(self.select_victims(entries, now, criteria))
            return [] if dry_run else list(planned)

        removed = await self.store.evict(role_id, selector)
        if dry_run:
            removed = list(planned)

        report = CleanupReport(
            role_id=role_id,
            removed_ids=removed,
            removed_count=len(removed),
            remaining=seen["total"] - len(removed),
            criteria=criteria,
            reasons={mid: planned[mid] for mid in removed},
            dry_run=dry_run,
        )

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Cleanup for role {role_id}: {'would remove' if dry_run else 'removed'} "
            f"{report.removed_count}, {report.remaining} remain"
        )
        log_step(new_run_id(), "cleanup", duration_ms, extra={
            "role_id": role_id,
            "removed": report.removed_count,
            "remaining": report.remaining,
            "dry_run": dry_run,
        })

        return report

    async def maybe_cleanup(self, role_id: str) -> Optional[CleanupReport]:
        """
        Run a cleanup when auto cleanup is on and the role is over capacity.

        Returns:
            CleanupReport if a pass ran, else None
        """
        if not self.config.auto_cleanup:
            return None
        count = await self.store.count(role_id)
        if count <= self.config.max_entries:
            return None
        logger.info(f"Role {role_id} holds {count} memories (cap {self.config.max_entries}), cleaning up")
        return await self.apply(role_id)
