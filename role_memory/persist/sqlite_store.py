"""
SQLite-backed key-value store for role memory records.

Uses SQLite with separate tables per record kind:
- memories: <role_id>:<memory_id> → MemoryEntry JSON
- traits: <role_id>:<trait name> → TraitRecord JSON
- goals: <role_id>:<goal_id> → GoalRecord JSON

All values stored as TEXT with a write timestamp.
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple


TABLES = ("memories", "traits", "goals")


class KVStore:
    """
    File-backed SQLite key-value store.

    Thread-safe with WAL mode; every statement runs under one connection lock
    so callers may use it from worker threads.
    """

    def __init__(self, db_path: Path):
        """
        Initialize KV store at given path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=10.0,
        )

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create record tables if they don't exist."""
        for table in TABLES:
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    ts REAL NOT NULL
                )
            """)

        self._conn.commit()

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")

    def set(self, table: str, key: str, value: str) -> None:
        """
        Set a key-value pair in the specified table.

        Args:
            table: Table name (memories, traits, goals)
            key: String key
            value: Serialized record
        """
        self.set_many(table, {key: value})

    def set_many(self, table: str, items: Dict[str, str]) -> None:
        """
        Write several key-value pairs in one transaction.

        Args:
            table: Table name
            items: Mapping of key to serialized record
        """
        self._check_table(table)
        if not items:
            return

        ts = time.time()
        with self._lock:
            with self._conn:
                self._conn.executemany(
                    f"INSERT OR REPLACE INTO {table} (key, value, ts) VALUES (?, ?, ?)",
                    [(key, value, ts) for key, value in items.items()],
                )

    def get(self, table: str, key: str) -> Optional[str]:
        """
        Get value for a key from the specified table.

        Args:
            table: Table name
            key: String key

        Returns:
            Serialized record if found, None otherwise
        """
        self._check_table(table)
        with self._lock:
            cursor = self._conn.execute(
                f"SELECT value FROM {table} WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()

        return row[0] if row else None

    def delete(self, table: str, key: str) -> bool:
        """
        Delete a key from the specified table.

        Returns:
            True if a row was deleted
        """
        return self.delete_many(table, [key]) > 0

    def delete_many(self, table: str, keys: Iterable[str]) -> int:
        """
        Delete several keys in one transaction.

        Returns:
            Number of rows deleted
        """
        self._check_table(table)
        keys = list(keys)
        if not keys:
            return 0

        with self._lock:
            with self._conn:
                deleted = 0
                for key in keys:
                    cursor = self._conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
                    deleted += cursor.rowcount

        return deleted

    def items(self, table: str, prefix: str = "") -> List[Tuple[str, str]]:
        """
        List (key, value) pairs whose key starts with prefix.

        Args:
            table: Table name
            prefix: Key prefix, e.g. "<role_id>:"

        Returns:
            Pairs ordered by key
        """
        self._check_table(table)
        with self._lock:
            cursor = self._conn.execute(
                f"SELECT key, value FROM {table} WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            return cursor.fetchall()

    def count(self, table: str, prefix: str = "") -> int:
        """Count keys starting with prefix."""
        self._check_table(table)
        with self._lock:
            cursor = self._conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            )
            return cursor.fetchone()[0]

    def purge_prefix(self, table: str, prefix: str) -> int:
        """
        Delete all entries whose key starts with prefix.

        Returns:
            Number of rows deleted
        """
        self._check_table(table)
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    f"DELETE FROM {table} WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
                return cursor.rowcount

    def stats(self, table: str) -> dict:
        """
        Get statistics for a table.

        Returns:
            Dict with count, total_bytes, oldest_ts, newest_ts
        """
        self._check_table(table)
        with self._lock:
            cursor = self._conn.execute(f"""
                SELECT
                    COUNT(*) as count,
                    SUM(LENGTH(value)) as total_bytes,
                    MIN(ts) as oldest_ts,
                    MAX(ts) as newest_ts
                FROM {table}
            """)
            row = cursor.fetchone()

        return {
            "count": row[0] or 0,
            "total_bytes": row[1] or 0,
            "oldest_ts": row[2] or 0,
            "newest_ts": row[3] or 0,
        }

    def vacuum(self) -> None:
        """Reclaim space after large deletions."""
        with self._lock:
            self._conn.execute("VACUUM")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
