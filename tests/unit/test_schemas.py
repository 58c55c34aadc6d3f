"""
Unit tests for role_memory/memory/schemas.py

Tests list cleaning, priority coercion, entry validation and filters.
"""

import pytest

from role_memory.errors import MissingRequiredField, OutOfRangeValue
from role_memory.memory.schemas import (
    GoalRecord,
    MemoryEntry,
    MemoryFilter,
    MemoryType,
    TraitRecord,
    coerce_bool,
    coerce_priority,
    entry_from_dict,
    split_list,
)


# ============================================================================
# Coercion helpers
# ============================================================================

def test_split_list_trims_dedupes_and_keeps_order():
    assert split_list(" coffee, tea ,,coffee, mornings ") == ["coffee", "tea", "mornings"]


def test_split_list_accepts_full_width_commas():
    assert split_list("咖啡，早晨习惯,咖啡") == ["咖啡", "早晨习惯"]


def test_split_list_handles_none_and_lists():
    assert split_list(None) == []
    assert split_list(["a", " a ", "", "b"]) == ["a", "b"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        (75, 75),
        ("75", 75),
        (" 42 ", 42),
        (150, 100),
        (-5, 0),
        ("88.6", 89),
        (None, 60),
        ("", 60),
    ],
)
def test_coerce_priority(raw, expected):
    assert coerce_priority(raw) == expected


@pytest.mark.parametrize("raw", ["high", "7x", True, "nan", float("inf")])
def test_coerce_priority_rejects_non_numeric(raw):
    with pytest.raises(OutOfRangeValue) as exc_info:
        coerce_priority(raw)
    assert exc_info.value.field == "priority"


def test_coerce_bool():
    assert coerce_bool("TRUE") is True
    assert coerce_bool("true ") is True
    assert coerce_bool("yes") is False
    assert coerce_bool(None, default=True) is True
    assert coerce_bool("", default=True) is True
    assert coerce_bool(False, default=True) is False


# ============================================================================
# MemoryEntry
# ============================================================================

def test_entry_defaults():
    entry = MemoryEntry(content="The user likes green tea")

    assert entry.id
    assert entry.type == MemoryType.SEMANTIC
    assert entry.priority == 60
    assert entry.is_constant is False
    assert entry.access_count == 0
    assert entry.source == "conversation"


def test_entry_cleans_lists_and_clamps_priority():
    entry = MemoryEntry(content="  hello  ", keywords="a, b, a", tags=["x", "x"], priority="120")

    assert entry.content == "hello"
    assert entry.keywords == ["a", "b"]
    assert entry.tags == ["x"]
    assert entry.priority == 100


def test_entry_rejects_trait_type():
    with pytest.raises(ValueError):
        MemoryEntry(type=MemoryType.TRAIT, content="brave")


def test_entry_metadata_rejects_nested_values():
    with pytest.raises(ValueError):
        MemoryEntry(content="x", metadata={"nested": {"a": 1}})


def test_mark_accessed_is_monotonic():
    entry = MemoryEntry(content="x", last_accessed=100.0)

    entry.mark_accessed(50.0)
    assert entry.last_accessed == 100.0
    assert entry.access_count == 1

    entry.mark_accessed(200.0)
    assert entry.last_accessed == 200.0
    assert entry.access_count == 2


def test_storage_roundtrip_keeps_metadata_types():
    entry = MemoryEntry(content="x", metadata={"version": "1", "original_length": 1, "truncated": False})
    restored = MemoryEntry.from_storage_dict(entry.to_storage_dict())

    assert restored == entry
    assert restored.metadata["truncated"] is False
    assert restored.metadata["original_length"] == 1


def test_entry_from_dict_maps_errors():
    with pytest.raises(MissingRequiredField) as exc_info:
        entry_from_dict({"content": "   "})
    assert exc_info.value.fields == ["content"]

    with pytest.raises(OutOfRangeValue) as exc_info:
        entry_from_dict({"content": "x", "priority": "urgent"})
    assert exc_info.value.field == "priority"

    with pytest.raises(OutOfRangeValue):
        entry_from_dict({"content": "x", "relevance_weight": 2.0})


# ============================================================================
# Traits, goals and filters
# ============================================================================

def test_trait_defaults():
    trait = TraitRecord(name="temperament", value="calm")

    assert trait.priority == 70
    assert trait.is_constant is True
    assert trait.confidence is None


def test_goal_defaults_and_status():
    goal = GoalRecord(value="Find the lost sword")

    assert goal.status == "active"
    assert goal.is_constant is False

    with pytest.raises(ValueError):
        GoalRecord(value="x", status="paused")


def test_memory_filter_matches(make_entry):
    entry = make_entry("Met Alice at the harbor", type=MemoryType.EPISODIC, priority=70, tags=["harbor"])

    assert MemoryFilter().matches(entry)
    assert MemoryFilter(memory_types=[MemoryType.EPISODIC]).matches(entry)
    assert not MemoryFilter(memory_types=[MemoryType.SEMANTIC]).matches(entry)
    assert MemoryFilter(search="ALICE").matches(entry)
    assert MemoryFilter(search="harbor").matches(entry)
    assert not MemoryFilter(search="castle").matches(entry)
    assert not MemoryFilter(priority_min=80).matches(entry)
    assert MemoryFilter(priority_max=70, is_constant=False).matches(entry)
