"""
Unit tests for role_memory/memory/integrate.py
"""

from unittest.mock import AsyncMock

from role_memory.config import MemorySettings
from role_memory.memory.integrate import MemoryIntegration, create_memory_integration
from role_memory.memory.policy import EvictionPolicy
from role_memory.memory.recall import TriggerEngine
from role_memory.memory.schemas import ConversationSnapshot
from role_memory.persist import memory_version


ROLE = "role-a"


def make_integration(store):
    return MemoryIntegration(store, TriggerEngine(store), EvictionPolicy(store))


async def test_inject_returns_block_and_metadata(store, make_entry):
    integration = make_integration(store)
    constant = await store.add(ROLE, make_entry("Her name is Alice", keywords=["name"], is_constant=True))
    tea = await store.add(ROLE, make_entry("Prefers green tea", keywords=["tea"]))

    content, metadata = await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea?"))

    assert "[CONSTANT MEMORIES]" in content
    assert "Prefers green tea" in content
    assert metadata.used_ids == [constant.id, tea.id]
    assert metadata.used_count == 2
    assert metadata.used_chars == len("Her name is Alice") + len("Prefers green tea")
    assert metadata.memory_version == memory_version(ROLE, [constant.id, tea.id])


async def test_inject_nothing_relevant(store, make_entry):
    integration = make_integration(store)
    await store.add(ROLE, make_entry("Owns a cat", keywords=["cat"]))

    content, metadata = await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea?"))

    assert content == ""
    assert metadata.used_count == 0
    assert metadata.memory_version == "none"


async def test_inject_swallows_trigger_failures(store):
    engine = TriggerEngine(store)
    engine.trigger = AsyncMock(side_effect=RuntimeError("boom"))
    integration = MemoryIntegration(store, engine, EvictionPolicy(store))

    content, metadata = await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea"))

    assert content == ""
    assert metadata.used_ids == []


async def test_inject_superseded_turn(store, make_entry):
    integration = make_integration(store)
    await store.add(ROLE, make_entry(keywords=["tea"]))

    await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea", turn=3))
    content, metadata = await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea", turn=2))

    assert content == ""
    assert metadata.superseded is True


def test_create_memory_integration(kv):
    settings = MemorySettings(db_path=str(kv.db_path))

    integration = create_memory_integration(settings, kv=kv)

    assert integration.store.kv is kv
    assert integration.engine.config == settings.trigger
    assert integration.policy.config == settings.cleanup


async def test_clear_role_resets_turn_tracking(store, make_entry):
    integration = make_integration(store)
    await store.add(ROLE, make_entry(keywords=["tea"]))
    await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea", turn=5))

    counts = await integration.clear_role(ROLE)

    assert counts["memories"] == 1
    assert ROLE not in integration.engine._latest_turn

    await store.add(ROLE, make_entry(keywords=["tea"]))
    content, metadata = await integration.inject(ConversationSnapshot(role_id=ROLE, utterance="tea", turn=1))
    assert metadata.superseded is False
    assert metadata.used_count == 1
