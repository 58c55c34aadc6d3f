"""
Persistence layer for role memory.

Provides:
- SQLite-backed KV store with per-role key prefixes
- Stable hashing for deterministic goal ids and injection fingerprints
"""

from .hashing import goal_id_for, memory_version, stable_hash
from .sqlite_store import TABLES, KVStore

__all__ = [
    "stable_hash",
    "goal_id_for",
    "memory_version",
    "KVStore",
    "TABLES",
]
