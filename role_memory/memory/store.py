"""
Per-role memory persistence on top of the SQLite KVStore.

Keys are laid out as `<role_id>:<record key>` in three tables:
- memories: episodic and semantic MemoryEntry records
- traits: TraitRecord keyed by trait name
- goals: GoalRecord keyed by goal id

Every operation for one role runs under that role's asyncio.Lock, so writes
apply in issue order and a read issued after a write sees it. Roles never
share a lock. Blocking SQLite work runs in a worker thread.
"""

import asyncio
import difflib
import json
import logging
import sqlite3
import time
import weakref
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from role_memory.errors import MemoryValidationError, NotFoundError, StorageIOError
from role_memory.persist import KVStore, goal_id_for
from .enrich import tokenize
from .schemas import (
    BulkDeleteResult,
    GoalRecord,
    ImportReport,
    MemoryEntry,
    MemoryFilter,
    MemoryStats,
    MemoryType,
    RoleOverview,
    TraitRecord,
    entry_from_dict,
    new_memory_id,
    split_list,
)


logger = logging.getLogger(__name__)

# Fields a patch may never overwrite
IMMUTABLE_FIELDS = {"id", "created_at", "last_accessed", "access_count"}

Selector = Callable[[List[MemoryEntry]], List[MemoryEntry]]
VictimSelector = Callable[[List[MemoryEntry]], List[str]]

_SORT_KEYS: Dict[str, Callable[[MemoryEntry], Any]] = {
    "recency": lambda e: e.updated_at,
    "priority": lambda e: (e.priority, e.updated_at),
    "access": lambda e: (e.access_count, e.last_accessed),
    "created": lambda e: e.created_at,
}


class MemoryStore:
    """
    Async store owning every memory, trait and goal of every role.

    Features:
    - Add with merge-on-existing-id and optional near-duplicate merging
    - Retrieval path that bumps access bookkeeping atomically
    - Administrative listing and search that never touch bookkeeping
    - Constant entries survive every removal except a forced one
    """

    def __init__(self, kv: KVStore, clock: Callable[[], float] = time.time):
        """
        Initialize memory store.

        Args:
            kv: Backing key-value store
            clock: Returns the current unix time; injectable for tests
        """
        self.kv = kv
        self.clock = clock
        # Locks live as long as an operation holds or awaits them
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ========================================================================
    # Internals
    # ========================================================================

    def _lock(self, role_id: str) -> asyncio.Lock:
        _check_role(role_id)
        lock = self._locks.get(role_id)
        if lock is None:
            lock = self._locks[role_id] = asyncio.Lock()
        return lock

    async def _io(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking KV call in a worker thread, mapping SQLite failures."""
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.error(f"Storage failure in {getattr(fn, '__name__', fn)}: {exc}")
            raise StorageIOError(str(exc)) from exc

    def _load_all(self, role_id: str) -> List[MemoryEntry]:
        entries = []
        for key, value in self.kv.items("memories", f"{role_id}:"):
            try:
                entries.append(MemoryEntry.from_storage_dict(json.loads(value)))
            except (json.JSONDecodeError, ValueError) as exc:
                logger.warning(f"Skipping unreadable memory {key}: {exc}")
        return entries

    def _load(self, role_id: str, memory_id: str) -> Optional[MemoryEntry]:
        value = self.kv.get("memories", f"{role_id}:{memory_id}")
        if value is None:
            return None
        try:
            return MemoryEntry.from_storage_dict(json.loads(value))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning(f"Unreadable memory {role_id}:{memory_id}: {exc}")
            return None

    def _save(self, role_id: str, entries: Sequence[MemoryEntry]) -> None:
        self.kv.set_many(
            "memories",
            {
                f"{role_id}:{entry.id}": json.dumps(entry.to_storage_dict(), ensure_ascii=False)
                for entry in entries
            },
        )

    def _stamp_new(self, entry: MemoryEntry, now: float) -> MemoryEntry:
        return entry.model_copy(update={
            "created_at": now,
            "updated_at": now,
            "last_accessed": now,
            "access_count": 0,
        })

    # ========================================================================
    # Memory entries
    # ========================================================================

    async def add(self, role_id: str, entry: MemoryEntry) -> MemoryEntry:
        """
        Store a memory entry.

        A new entry gets fresh timestamps and a zero access count. An entry
        whose id already exists is merged into the stored one: content
        fields are replaced, `created_at` and access bookkeeping are kept and
        `updated_at` is bumped.

        Args:
            role_id: Owning role
            entry: Entry to store

        Returns:
            The entry as persisted
        """
        async with self._lock(role_id):
            now = self.clock()
            existing = await self._io(self._load, role_id, entry.id)
            if existing is None:
                stored = self._stamp_new(entry, now)
            else:
                stored = entry.model_copy(update={
                    "created_at": existing.created_at,
                    "updated_at": max(existing.updated_at, now),
                    "last_accessed": existing.last_accessed,
                    "access_count": existing.access_count,
                })
            await self._io(self._save, role_id, [stored])

        logger.debug(f"Stored memory {stored.id} for role {role_id}")
        return stored

    async def add_deduplicated(
        self,
        role_id: str,
        entry: MemoryEntry,
        similarity: float = 0.9,
    ) -> Tuple[MemoryEntry, bool]:
        """
        Store an entry unless a near-identical one of the same type exists.

        Two contents match when equal or when their difflib ratio reaches
        `similarity`. On a match the existing entry keeps its id, takes the
        longer content, and unions every list field.

        Returns:
            (persisted entry, True if merged into an existing one)
        """
        async with self._lock(role_id):
            now = self.clock()
            entries = await self._io(self._load_all, role_id)

            match = None
            for existing in entries:
                if existing.type != entry.type:
                    continue
                if existing.content == entry.content or _similar(existing.content, entry.content) >= similarity:
                    match = existing
                    break

            if match is None:
                stored = self._stamp_new(entry, now)
                merged = False
            else:
                longer = entry if len(entry.content) > len(match.content) else match
                stored = match.model_copy(update={
                    "content": longer.content,
                    "keywords": split_list(match.keywords + entry.keywords),
                    "tags": split_list(match.tags + entry.tags),
                    "related_topics": split_list(match.related_topics + entry.related_topics),
                    "emotional_context": split_list(match.emotional_context + entry.emotional_context),
                    "priority": max(match.priority, entry.priority),
                    "is_constant": match.is_constant or entry.is_constant,
                    "metadata": {**match.metadata, **entry.metadata},
                    "updated_at": max(match.updated_at, now),
                })
                merged = True

            await self._io(self._save, role_id, [stored])

        if merged:
            logger.info(f"Merged duplicate memory into {stored.id} for role {role_id}")
        return stored, merged

    async def update(self, role_id: str, memory_id: str, patch: Dict[str, Any]) -> MemoryEntry:
        """
        Merge a patch into an existing entry.

        Args:
            role_id: Owning role
            memory_id: Entry to update
            patch: Field values to replace; identity and access fields are ignored

        Returns:
            Updated entry

        Raises:
            NotFoundError: memory_id is unknown for this role
            MemoryValidationError: patched entry is invalid
        """
        async with self._lock(role_id):
            existing = await self._io(self._load, role_id, memory_id)
            if existing is None:
                raise NotFoundError(memory_id, role_id)

            data = existing.to_storage_dict()
            data.update({k: v for k, v in patch.items() if k not in IMMUTABLE_FIELDS})
            data["updated_at"] = max(existing.updated_at, self.clock())
            updated = entry_from_dict(data)

            await self._io(self._save, role_id, [updated])

        return updated

    async def get(self, role_id: str, memory_id: str) -> Optional[MemoryEntry]:
        """Point lookup. Does not count as an access."""
        async with self._lock(role_id):
            return await self._io(self._load, role_id, memory_id)

    async def retrieve(self, role_id: str, selector: Selector) -> List[MemoryEntry]:
        """
        Select entries and record the access in one serialized step.

        The selector sees every entry of the role and returns the ones being
        surfaced. Once started the step runs to completion even if the
        caller is cancelled, so access counts are never half applied.

        Returns:
            Selected entries with bookkeeping applied, in selector order
        """
        return await asyncio.shield(self._retrieve(role_id, selector))

    async def _retrieve(self, role_id: str, selector: Selector) -> List[MemoryEntry]:
        async with self._lock(role_id):
            entries = await self._io(self._load_all, role_id)
            selected = selector(entries)
            if not selected:
                return []

            now = self.clock()
            for entry in selected:
                entry.mark_accessed(now)
            await self._io(self._save, role_id, selected)

        return selected

    async def touch(self, role_id: str, memory_ids: Sequence[str]) -> int:
        """
        Record an access on the given entries.

        Returns:
            Number of entries found and touched
        """
        wanted = set(memory_ids)
        touched = await self.retrieve(role_id, lambda entries: [e for e in entries if e.id in wanted])
        return len(touched)

    async def list(self, role_id: str, memory_filter: Optional[MemoryFilter] = None) -> List[MemoryEntry]:
        """
        List entries matching a filter, sorted descending by its sort key.

        Administrative path: access bookkeeping is untouched.
        """
        memory_filter = memory_filter or MemoryFilter()
        async with self._lock(role_id):
            entries = await self._io(self._load_all, role_id)

        matched = [e for e in entries if memory_filter.matches(e)]
        matched.sort(key=_SORT_KEYS[memory_filter.sort_by], reverse=True)
        return matched[:memory_filter.limit]

    async def search(
        self,
        role_id: str,
        text: str,
        memory_types: Optional[List[MemoryType]] = None,
        limit: int = 10,
    ) -> List[MemoryEntry]:
        """
        Text search over content and topical terms.

        Entries are ranked by how many query terms they contain, then by
        priority and recency. The whole query also counts as one term, so
        a query with no usable tokens still matches by substring.
        """
        query = text.strip().lower()
        if not query:
            return []
        terms = split_list([query] + tokenize(query))

        async with self._lock(role_id):
            entries = await self._io(self._load_all, role_id)

        scored = []
        for entry in entries:
            if memory_types and entry.type not in memory_types:
                continue
            haystack = " ".join([entry.content] + entry.topical_terms()).lower()
            hits = sum(1 for term in terms if term in haystack)
            if hits:
                scored.append((hits, entry))

        scored.sort(key=lambda pair: (pair[0], pair[1].priority, pair[1].updated_at), reverse=True)
        return [entry for _, entry in scored[:limit]]

    async def remove(self, role_id: str, memory_id: str, force: bool = False) -> bool:
        """
        Hard-delete an entry.

        Constant entries are left in place unless `force` is set.

        Returns:
            True if deleted, False if the entry is constant and not forced

        Raises:
            NotFoundError: memory_id is unknown for this role
        """
        async with self._lock(role_id):
            existing = await self._io(self._load, role_id, memory_id)
            if existing is None:
                raise NotFoundError(memory_id, role_id)
            if existing.is_constant and not force:
                logger.info(f"Refusing to remove constant memory {memory_id} without force")
                return False
            await self._io(self.kv.delete, "memories", f"{role_id}:{memory_id}")

        return True

    async def remove_many(self, role_id: str, memory_ids: Sequence[str], force: bool = False) -> BulkDeleteResult:
        """
        Hard-delete several entries in one serialized step.

        Unknown ids are reported rather than raised; constant entries are
        kept unless `force` is set.
        """
        result = BulkDeleteResult()
        async with self._lock(role_id):
            entries = {e.id: e for e in await self._io(self._load_all, role_id)}
            for memory_id in dict.fromkeys(memory_ids):
                entry = entries.get(memory_id)
                if entry is None:
                    result.not_found.append(memory_id)
                elif entry.is_constant and not force:
                    result.kept_constant.append(memory_id)
                else:
                    result.deleted.append(memory_id)

            if result.deleted:
                await self._io(
                    self.kv.delete_many,
                    "memories",
                    [f"{role_id}:{mid}" for mid in result.deleted],
                )

        logger.info(f"Bulk delete for role {role_id}: {len(result.deleted)} deleted, "
                    f"{len(result.kept_constant)} constant kept, {len(result.not_found)} not found")
        return result

    async def evict(self, role_id: str, selector: VictimSelector) -> List[str]:
        """
        Remove the entries a victim selector picks, in one serialized step.

        Constant entries are filtered out of the selector's answer.

        Returns:
            Ids actually removed
        """
        async with self._lock(role_id):
            entries = await self._io(self._load_all, role_id)
            constants = {e.id for e in entries if e.is_constant}
            victims = [mid for mid in selector(entries) if mid not in constants]
            if victims:
                await self._io(
                    self.kv.delete_many,
                    "memories",
                    [f"{role_id}:{mid}" for mid in victims],
                )

        return victims

    async def count(self, role_id: str) -> int:
        async with self._lock(role_id):
            return await self._io(self.kv.count, "memories", f"{role_id}:")

    async def stats(self, role_id: str) -> MemoryStats:
        """
        Aggregate counts by type, priority and timestamps for one role.

        Returns:
            MemoryStats including trait and goal counts
        """
        async with self._lock(role_id):
            entries = await self._io(self._load_all, role_id)
            trait_count = await self._io(self.kv.count, "traits", f"{role_id}:")
            goal_count = await self._io(self.kv.count, "goals", f"{role_id}:")

        if not entries:
            return MemoryStats(trait_count=trait_count, goal_count=goal_count)

        by_type: Dict[str, int] = {}
        for entry in entries:
            by_type[entry.type.value] = by_type.get(entry.type.value, 0) + 1

        most_accessed = sorted(entries, key=lambda e: (e.access_count, e.last_accessed), reverse=True)

        return MemoryStats(
            total=len(entries),
            by_type=by_type,
            constant_count=sum(1 for e in entries if e.is_constant),
            average_priority=round(sum(e.priority for e in entries) / len(entries), 2),
            oldest_created_at=min(e.created_at for e in entries),
            newest_created_at=max(e.created_at for e in entries),
            total_access_count=sum(e.access_count for e in entries),
            most_accessed=[e.id for e in most_accessed[:5] if e.access_count > 0],
            trait_count=trait_count,
            goal_count=goal_count,
        )

    # ========================================================================
    # Import / export
    # ========================================================================

    async def export_role(self, role_id: str, memory_ids: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """
        Dump a role's memories as storage dicts, oldest first.

        Args:
            role_id: Role to export
            memory_ids: Restrict the export to these ids; unknown ids are skipped

        Returns:
            {"role_id", "exported_at", "count", "memories"}
        """
        async with self._lock(role_id):
            entries = await self._io(self._load_all, role_id)

        if memory_ids is not None:
            wanted = set(memory_ids)
            entries = [e for e in entries if e.id in wanted]
        entries.sort(key=lambda e: (e.created_at, e.id))

        return {
            "role_id": role_id,
            "exported_at": self.clock(),
            "count": len(entries),
            "memories": [e.to_storage_dict() for e in entries],
        }

    async def import_entries(self, role_id: str, records: Sequence[Any]) -> ImportReport:
        """
        Validate and store exported memory records under a role.

        Each record goes through `entry_from_dict`; invalid ones are reported
        and skipped. A record whose id is already taken is stored under a
        fresh id. Imported entries get fresh timestamps and a zero access
        count.
        """
        report = ImportReport()
        async with self._lock(role_id):
            now = self.clock()
            taken = {e.id for e in await self._io(self._load_all, role_id)}

            accepted = []
            for index, record in enumerate(records):
                if not isinstance(record, dict):
                    report.errors.append(f"record {index}: expected an object")
                    continue
                try:
                    entry = entry_from_dict(record)
                except MemoryValidationError as exc:
                    report.errors.append(f"record {index} ({record.get('id', 'no id')}): {exc}")
                    continue

                if entry.id in taken:
                    original_id = entry.id
                    entry = entry.model_copy(update={"id": new_memory_id()})
                    report.renamed[original_id] = entry.id

                taken.add(entry.id)
                accepted.append(self._stamp_new(entry, now))
                report.imported_ids.append(entry.id)

            if accepted:
                await self._io(self._save, role_id, accepted)

        logger.info(f"Imported {len(accepted)} memories for role {role_id}, {len(report.errors)} rejected")
        return report

    async def overview(self) -> Dict[str, RoleOverview]:
        """Memory count and type breakdown for every role with stored memories."""
        rows = await self._io(self.kv.items, "memories")

        roles: Dict[str, RoleOverview] = {}
        for key, value in rows:
            role_id, _, _ = key.partition(":")
            try:
                memory_type = json.loads(value).get("type", "unknown")
            except (json.JSONDecodeError, AttributeError):
                logger.warning(f"Skipping unreadable memory {key}")
                continue
            summary = roles.setdefault(role_id, RoleOverview())
            summary.count += 1
            summary.by_type[memory_type] = summary.by_type.get(memory_type, 0) + 1

        return roles

    # ========================================================================
    # Traits and goals
    # ========================================================================

    async def upsert_traits(self, role_id: str, traits: Sequence[TraitRecord]) -> List[TraitRecord]:
        """
        Insert or replace traits by name.

        A trait restated without a confidence keeps its previous one.

        Returns:
            Traits as persisted
        """
        async with self._lock(role_id):
            now = self.clock()
            stored = []
            for trait in traits:
                previous = await self._io(self.kv.get, "traits", f"{role_id}:{trait.name}")
                update: Dict[str, Any] = {"updated_at": now}
                if previous is not None and trait.confidence is None:
                    earlier = _read_record(TraitRecord, f"{role_id}:{trait.name}", previous)
                    if earlier is not None:
                        update["confidence"] = earlier.confidence
                stored.append(trait.model_copy(update=update))

            await self._io(
                self.kv.set_many,
                "traits",
                {f"{role_id}:{t.name}": t.model_dump_json() for t in stored},
            )

        return stored

    async def list_traits(self, role_id: str) -> List[TraitRecord]:
        """Traits of a role, highest priority first."""
        async with self._lock(role_id):
            rows = await self._io(self.kv.items, "traits", f"{role_id}:")

        traits = [t for t in (_read_record(TraitRecord, key, value) for key, value in rows) if t is not None]
        traits.sort(key=lambda t: (t.priority, t.updated_at), reverse=True)
        return traits

    async def upsert_goals(self, role_id: str, goals: Sequence[GoalRecord]) -> List[GoalRecord]:
        """
        Insert or replace goals by id.

        Goals without an id get one derived from their description, so a
        restated goal updates the existing record.
        """
        async with self._lock(role_id):
            now = self.clock()
            stored = [
                goal.model_copy(update={"id": goal.id or goal_id_for(goal.value), "updated_at": now})
                for goal in goals
            ]
            await self._io(
                self.kv.set_many,
                "goals",
                {f"{role_id}:{g.id}": g.model_dump_json() for g in stored},
            )

        return stored

    async def list_goals(self, role_id: str) -> List[GoalRecord]:
        """Goals of a role, highest priority first."""
        async with self._lock(role_id):
            rows = await self._io(self.kv.items, "goals", f"{role_id}:")

        goals = [g for g in (_read_record(GoalRecord, key, value) for key, value in rows) if g is not None]
        goals.sort(key=lambda g: (g.priority, g.updated_at), reverse=True)
        return goals

    async def clear_role(self, role_id: str) -> Dict[str, int]:
        """
        Delete every record of a role.

        Returns:
            Rows deleted per table
        """
        async with self._lock(role_id):
            counts = {}
            for table in ("memories", "traits", "goals"):
                counts[table] = await self._io(self.kv.purge_prefix, table, f"{role_id}:")

        logger.info(f"Cleared role {role_id}: {counts}")
        return counts


def _read_record(model: Any, key: str, value: str) -> Optional[Any]:
    """Parse one stored trait or goal row; unreadable rows are logged and skipped."""
    try:
        return model.model_validate_json(value)
    except ValueError as exc:
        logger.warning(f"Skipping unreadable {model.__name__} {key}: {exc}")
        return None


def _check_role(role_id: str) -> None:
    if not role_id or ":" in role_id:
        raise MemoryValidationError(f"invalid role id: {role_id!r}")


def _similar(a: str, b: str) -> float:
    return difflib.SequenceMatcher(None, a, b).ratio()
