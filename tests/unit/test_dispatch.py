"""
Unit tests for role_memory/tools/dispatch.py

Tests the ToolResult contract for every memory tool: success, pending,
validation failure and storage failure.
"""

import pytest

from role_memory.config import CleanupConfig, NormalizerConfig
from role_memory.memory.policy import EvictionPolicy
from role_memory.memory.schemas import MemoryType
from role_memory.tools.dispatch import AWAITING_MESSAGE, MemoryToolDispatcher, entry_from_request
from role_memory.tools.requests import AddEpisodic, AddSemantic, ToolCall


ROLE = "role-a"

MEMORY_XML = (
    "<memory><content>用户喜欢喝咖啡</content><keywords>咖啡,早晨习惯</keywords>"
    "<priority>75</priority><is_constant>true</is_constant></memory>"
)


@pytest.fixture
def dispatcher(store):
    return MemoryToolDispatcher(store, EvictionPolicy(store, CleanupConfig(max_entries=50)))


# ============================================================================
# Entry construction
# ============================================================================

def test_entry_from_semantic_request():
    entry = entry_from_request(AddSemantic(content="Likes tea", tags=["drinks"], perspective="first", original_length=9))

    assert entry.type == MemoryType.SEMANTIC
    assert entry.relevance_weight == 0.9
    assert entry.emotional_weight == 0.3
    assert entry.time_decay_factor == 0.05
    assert entry.related_topics == ["drinks"]
    assert entry.keywords == ["likes", "tea"]
    assert entry.metadata == {"version": "1", "original_length": 9, "truncated": False, "perspective": "first"}


def test_entry_from_episodic_request():
    entry = entry_from_request(AddEpisodic(content="We had a great day", keywords=["day"], ua_info=["a", "b"]))

    assert entry.type == MemoryType.EPISODIC
    assert entry.relevance_weight == 0.8
    assert entry.time_decay_factor == 0.1
    assert entry.emotional_weight == 0.6
    assert entry.keywords == ["day"]
    assert entry.metadata["ua_info"] == "a,b"
    assert entry.metadata["original_length"] == len("We had a great day")


# ============================================================================
# Add tools
# ============================================================================

async def test_add_semantic_from_wrapped_xml(dispatcher, store):
    result = await dispatcher.dispatch(ROLE, {"name": "add_semantic_memory", "params": {"args": MEMORY_XML}})

    assert result.success is True
    assert result.data["merged"] is False
    stored = await store.get(ROLE, result.data["memory_id"])
    assert stored.content == "用户喜欢喝咖啡"
    assert stored.keywords == ["咖啡", "早晨习惯"]
    assert stored.priority == 75
    assert stored.is_constant is True


async def test_add_uses_user_message(dispatcher):
    result = await dispatcher.dispatch(ROLE, ToolCall(
        name="add_episodic_memory",
        params={"content": "Met at the cafe", "user_message": "Got it"},
    ))

    assert result.success is True
    assert result.message == "Got it"
    assert result.data["type"] == "episodic"


async def test_add_twice_merges(dispatcher, store):
    params = {"content": "The user likes green tea", "keywords": "tea"}

    first = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params=params))
    second = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params=params))

    assert second.data["merged"] is True
    assert second.data["memory_id"] == first.data["memory_id"]
    assert await store.count(ROLE) == 1


async def test_add_runs_auto_cleanup(store):
    dispatcher = MemoryToolDispatcher(store, EvictionPolicy(store, CleanupConfig(max_entries=2, priority_floor=0)))

    contents = ["The user likes green tea", "Owns two grey cats named Ash and Bo", "Travelled by night train to Vienna"]
    for i, content in enumerate(contents):
        result = await dispatcher.dispatch(ROLE, ToolCall(
            name="add_semantic_memory",
            params={"content": content, "priority": 50 + i},
        ))
        assert result.success is True

    assert result.data["cleanup"]["removed_count"] == 1
    assert await store.count(ROLE) == 2


async def test_truncated_content_is_flagged(store):
    dispatcher = MemoryToolDispatcher(
        store,
        EvictionPolicy(store),
        config=NormalizerConfig(max_content_chars=10),
    )

    result = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params={"content": "x" * 25}))

    stored = await store.get(ROLE, result.data["memory_id"])
    assert result.data["truncated"] is True
    assert stored.content == "x" * 10
    assert stored.metadata["original_length"] == 25
    assert stored.metadata["truncated"] is True


# ============================================================================
# Pending and failures
# ============================================================================

async def test_partial_call_is_pending(dispatcher, store):
    result = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params={}, partial=True))

    assert result.success is False
    assert result.pending is True
    assert result.message == AWAITING_MESSAGE
    assert result.error is None
    assert await store.count(ROLE) == 0


async def test_streamed_add_commits_only_the_final_call(dispatcher, store):
    chunk = await dispatcher.dispatch(ROLE, ToolCall(
        name="add_semantic_memory",
        params={"content": "用户喜"},
        partial=True,
    ))
    final = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params={"content": "用户喜欢喝咖啡"}))

    assert chunk.pending is True
    assert final.success is True
    assert [e.content for e in await store.list(ROLE)] == ["用户喜欢喝咖啡"]


async def test_partial_cleanup_removes_nothing(dispatcher, store, clock, make_entry):
    await store.add(ROLE, make_entry("old", priority=5))
    clock.advance(days=31)

    result = await dispatcher.dispatch(ROLE, ToolCall(name="cleanup_memories", params={"dry_run": "tr"}, partial=True))

    assert result.pending is True
    assert result.data == {}
    assert await store.count(ROLE) == 1


async def test_missing_content_is_an_error(dispatcher):
    result = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params={"keywords": "x"}))

    assert result.success is False
    assert result.pending is False
    assert "content" in result.error


async def test_unknown_tool(dispatcher):
    result = await dispatcher.dispatch(ROLE, ToolCall(name="forget_everything", params={}))

    assert result.success is False
    assert "unknown tool" in result.error


async def test_call_without_name_is_reported(dispatcher):
    result = await dispatcher.dispatch(ROLE, {"params": {"content": "Likes tea"}})

    assert result.success is False
    assert result.pending is False
    assert result.error.startswith("unreadable tool call: name")


async def test_invalid_role_id_is_reported(dispatcher):
    result = await dispatcher.dispatch("bad:role", ToolCall(name="get_memory_stats", params={}))

    assert result.success is False
    assert "invalid role id" in result.error


async def test_storage_failure_is_reported(dispatcher, kv):
    kv.close()

    result = await dispatcher.dispatch(ROLE, ToolCall(name="get_memory_stats", params={}))

    assert result.success is False
    assert result.error.startswith("storage failure")


# ============================================================================
# Traits, goals, reads, cleanup
# ============================================================================

async def test_update_traits_and_goals(dispatcher, store):
    traits = await dispatcher.dispatch(ROLE, ToolCall(
        name="update_traits",
        params={"xml_traits": "<traits><trait><name>mood</name><value>calm</value></trait></traits>"},
    ))
    goals = await dispatcher.dispatch(ROLE, ToolCall(
        name="update_goals",
        params={"goals": [{"description": "Find the sword", "priority": "80"}]},
    ))

    assert traits.success is True
    assert traits.data["traits"] == ["mood"]
    assert goals.success is True
    assert goals.data["goal_ids"][0].startswith("goal_")
    assert [g.priority for g in await store.list_goals(ROLE)] == [80]


async def test_search_memories(dispatcher, store, make_entry):
    await store.add(ROLE, make_entry("The user likes green tea", keywords=["tea"]))
    await store.add(ROLE, make_entry("Owns a cat", keywords=["cat"]))

    result = await dispatcher.dispatch(ROLE, ToolCall(name="search_memories", params={"search_text": "tea"}))

    assert result.success is True
    assert result.data["count"] == 1
    assert result.data["memories"][0]["content"] == "The user likes green tea"
    assert result.data["memories"][0]["access_count"] == 0


async def test_get_stats(dispatcher, store, make_entry):
    await store.add(ROLE, make_entry())

    result = await dispatcher.dispatch(ROLE, ToolCall(name="get_memory_stats", params={}))

    assert result.success is True
    assert result.data["total"] == 1
    assert result.data["by_type"] == {"semantic": 1}


async def test_get_recent_memories(dispatcher, store, clock, make_entry):
    await store.add(ROLE, make_entry("first"))
    clock.advance(seconds=10)
    await store.add(ROLE, make_entry("second"))

    result = await dispatcher.dispatch(ROLE, ToolCall(name="get_recent_memories", params={"limit": "1"}))

    assert [m["content"] for m in result.data["memories"]] == ["second"]


async def test_cleanup_tool_dry_run(dispatcher, store, clock, make_entry):
    await store.add(ROLE, make_entry("old", priority=30))
    clock.advance(days=31)

    result = await dispatcher.dispatch(ROLE, ToolCall(name="cleanup_memories", params={"dry_run": "true"}))

    assert result.success is True
    assert result.message.startswith("Would remove 1")
    assert result.data["dry_run"] is True
    assert await store.count(ROLE) == 1


async def test_cleanup_tool_removes_old_entries(dispatcher, store, clock, make_entry):
    await store.add(ROLE, make_entry("old", priority=30))
    clock.advance(days=10)
    await store.add(ROLE, make_entry("newer", priority=30))
    clock.advance(days=25)

    result = await dispatcher.dispatch(ROLE, ToolCall(name="cleanup_memories", params={}))

    assert result.data["removed_count"] == 1
    assert [e.content for e in await store.list(ROLE)] == ["newer"]
