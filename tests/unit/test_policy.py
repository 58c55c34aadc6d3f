"""
Unit tests for role_memory/memory/policy.py
"""

from role_memory.config import CleanupConfig
from role_memory.memory.policy import EvictionPolicy
from tests.conftest import DAY, START_TS


ROLE = "role-a"


async def _seed(store, make_entry):
    constant = await store.add(ROLE, make_entry("constant", priority=10, is_constant=True))
    others = {}
    for priority in (20, 40, 60, 75, 90):
        entry = await store.add(ROLE, make_entry(f"p{priority}", priority=priority))
        others[priority] = entry.id
    return constant, others


async def test_capacity_keeps_constant_and_top_priorities(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=3))
    constant, others = await _seed(store, make_entry)

    report = await policy.apply(ROLE)

    remaining = {e.content for e in await store.list(ROLE)}
    assert remaining == {"constant", "p75", "p90"}
    assert set(report.removed_ids) == {others[20], others[40], others[60]}
    assert report.remaining == 3
    assert all(reason == "capacity" for reason in report.reasons.values())


async def test_priority_floor_rule(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=100, priority_floor=50))
    constant, others = await _seed(store, make_entry)

    report = await policy.apply(ROLE)

    assert report.reasons == {others[20]: "priority_floor", others[40]: "priority_floor"}
    assert await store.get(ROLE, constant.id) is not None


async def test_constants_never_victims(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=0, priority_floor=100))
    constant, _ = await _seed(store, make_entry)

    report = await policy.apply(ROLE)

    assert constant.id not in report.removed_ids
    assert [e.id for e in await store.list(ROLE)] == [constant.id]


async def test_capacity_prefers_least_recently_accessed(store, clock, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=1, priority_floor=0))
    stale = await store.add(ROLE, make_entry("stale", priority=90))
    fresh = await store.add(ROLE, make_entry("fresh", priority=10))

    clock.advance(days=1)
    await store.touch(ROLE, [fresh.id])
    report = await policy.apply(ROLE)

    assert report.removed_ids == [stale.id]


async def test_age_rule(store, clock, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=100, priority_floor=0))
    old_low = await store.add(ROLE, make_entry("old low", priority=50))
    old_high = await store.add(ROLE, make_entry("old high", priority=85))
    old_constant = await store.add(ROLE, make_entry("old constant", priority=5, is_constant=True))

    clock.advance(days=40)
    recent = await store.add(ROLE, make_entry("recent", priority=10))

    report = await policy.apply(ROLE, max_age_days=30)

    assert report.reasons == {old_low.id: "age"}
    assert report.criteria["max_age_days"] == 30
    kept = {e.id for e in await store.list(ROLE)}
    assert kept == {old_high.id, old_constant.id, recent.id}


async def test_dry_run_removes_nothing(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=3))
    await _seed(store, make_entry)

    report = await policy.apply(ROLE, dry_run=True)

    assert report.dry_run is True
    assert report.removed_count == 3
    assert await store.count(ROLE) == 6


async def test_per_call_overrides(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=100))
    await _seed(store, make_entry)

    report = await policy.apply(ROLE, max_entries=5, priority_floor=0)

    assert report.removed_count == 1
    assert report.criteria["max_entries"] == 5
    assert report.criteria["priority_floor"] == 0


def test_select_victims_is_pure(store, make_entry):
    policy = EvictionPolicy(store)
    entries = [
        make_entry("a", priority=5),
        make_entry("b", priority=50, last_accessed=START_TS - 60 * DAY),
    ]

    victims = policy.select_victims(entries, START_TS, policy.criteria(max_age_days=30))

    assert victims == {entries[1].id: "age", entries[0].id: "priority_floor"}
    assert list(victims) == [entries[1].id, entries[0].id]


async def test_maybe_cleanup(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=6))
    await _seed(store, make_entry)

    assert await policy.maybe_cleanup(ROLE) is None

    await store.add(ROLE, make_entry("extra", priority=95))
    report = await policy.maybe_cleanup(ROLE)

    assert report is not None
    assert await store.count(ROLE) <= 6


async def test_maybe_cleanup_disabled(store, make_entry):
    policy = EvictionPolicy(store, CleanupConfig(max_entries=0, auto_cleanup=False))
    await _seed(store, make_entry)

    assert await policy.maybe_cleanup(ROLE) is None
    assert await store.count(ROLE) == 6
