"""Test configuration and fixtures."""

from typing import Any, Callable

import pytest

from role_memory.memory.schemas import MemoryEntry, MemoryType
from role_memory.memory.store import MemoryStore
from role_memory.persist.sqlite_store import KVStore


START_TS = 1_700_000_000.0
DAY = 86400.0


class FakeClock:
    """Deterministic clock; tests move time forward explicitly."""

    def __init__(self, start: float = START_TS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0.0, days: float = 0.0) -> float:
        self.now += seconds + days * DAY
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(tmp_path):
    """Create a temporary KVStore instance."""
    store = KVStore(tmp_path / "memory.db")
    yield store
    store.close()


@pytest.fixture
def store(kv, clock) -> MemoryStore:
    """MemoryStore on a temp database with a fixed clock."""
    return MemoryStore(kv, clock=clock)


@pytest.fixture
def make_entry() -> Callable[..., MemoryEntry]:
    """Factory for memory entries with sensible defaults."""

    def _make(content: str = "The user likes green tea", **overrides: Any) -> MemoryEntry:
        data = {
            "type": MemoryType.SEMANTIC,
            "content": content,
            "keywords": ["tea"],
            "created_at": START_TS,
            "updated_at": START_TS,
            "last_accessed": START_TS,
        }
        data.update(overrides)
        return MemoryEntry(**data)

    return _make
