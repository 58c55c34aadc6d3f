"""
Integration test for the full memory flow: tool writes, prompt injection
across turns, and cleanup keeping the store bounded.
"""

import pytest

from role_memory.config import CleanupConfig, MemorySettings, TriggerConfig
from role_memory.memory.integrate import create_memory_integration
from role_memory.memory.schemas import ConversationSnapshot
from role_memory.tools import MemoryToolDispatcher, ToolCall


pytestmark = pytest.mark.integration

ROLE = "heroine"


@pytest.fixture
def services(kv):
    settings = MemorySettings(
        db_path=str(kv.db_path),
        trigger=TriggerConfig(max_entries=4),
        cleanup=CleanupConfig(max_entries=5, priority_floor=0),
    )
    integration = create_memory_integration(settings, kv=kv)
    dispatcher = MemoryToolDispatcher(integration.store, integration.policy, config=settings.normalizer)
    return integration, dispatcher


async def test_write_trigger_cleanup(services):
    integration, dispatcher = services

    # Streaming call: first chunk has nothing usable yet
    pending = await dispatcher.dispatch(ROLE, ToolCall(name="add_semantic_memory", params={}, partial=True))
    assert pending.pending is True

    added = await dispatcher.dispatch(ROLE, ToolCall(
        name="add_semantic_memory",
        params={"args": (
            "<memory><content>用户喜欢喝咖啡</content><keywords>咖啡,早晨习惯</keywords>"
            "<priority>75</priority><is_constant>true</is_constant></memory>"
        )},
    ))
    assert added.success is True
    constant_id = added.data["memory_id"]

    await dispatcher.dispatch(ROLE, ToolCall(
        name="add_episodic_memory",
        params={"xml_memory": "<memory><content>We walked along the river at dusk</content>"
                              "<keywords>river,walk</keywords></memory>",
                "user_message": "I'll remember that walk"},
    ))
    await dispatcher.dispatch(ROLE, ToolCall(
        name="update_traits",
        params={"args": {"xml_traits": "<traits><trait><name>temper</name><value>gentle</value></trait></traits>"}},
    ))

    # Turn 1: the river comes up
    content, metadata = await integration.inject(ConversationSnapshot(
        role_id=ROLE,
        utterance="Shall we go back to the river?",
        turn=1,
    ))
    assert "用户喜欢喝咖啡" in content
    assert "We walked along the river at dusk" in content
    assert "- temper: gentle" in content
    assert metadata.used_count == 2
    assert metadata.used_ids[0] == constant_id

    # Turn 2: unrelated topic, only the constant stays
    content, metadata = await integration.inject(ConversationSnapshot(
        role_id=ROLE,
        utterance="What is the capital of France?",
        turn=2,
    ))
    assert metadata.used_ids == [constant_id]
    assert "river" not in content

    # Fill the store past capacity; automatic cleanup keeps it bounded
    topics = [
        "Collects antique maps of northern islands",
        "Once broke a wrist climbing in the Alps",
        "Speaks fluent Portuguese since childhood",
        "Keeps a sourdough starter named Gerald",
        "Plays cello in a weekend quartet",
    ]
    for i, text in enumerate(topics):
        result = await dispatcher.dispatch(ROLE, ToolCall(
            name="add_semantic_memory",
            params={"content": text, "priority": 10 + i * 10},
        ))
        assert result.success is True

    assert await integration.store.count(ROLE) == 5
    assert await integration.store.get(ROLE, constant_id) is not None

    stats = await dispatcher.dispatch(ROLE, ToolCall(name="get_memory_stats", params={}))
    assert stats.data["constant_count"] == 1
    assert stats.data["trait_count"] == 1
