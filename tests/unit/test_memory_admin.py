"""
Unit tests for scripts/memory_admin.py
"""

import json
import time

import pytest

from role_memory.persist.sqlite_store import KVStore
from scripts.memory_admin import format_bytes, format_time, main


ROLE = "role-a"


@pytest.fixture
def db_path(tmp_path, make_entry):
    """Database seeded with one constant and two stale memories."""
    path = tmp_path / "admin.db"
    stale = time.time() - 60 * 86400
    entries = [
        make_entry("Her name is Alice", is_constant=True, priority=90),
        make_entry("Drank tea once", priority=30, last_accessed=stale),
        make_entry("Visited the harbour", priority=40, last_accessed=stale),
    ]
    with KVStore(path) as kv:
        kv.set_many("memories", {
            f"{ROLE}:{e.id}": json.dumps(e.to_storage_dict()) for e in entries
        })
        kv.set("traits", f"{ROLE}:mood", json.dumps({"name": "mood", "value": "calm"}))
    return path


def count_rows(path, table="memories"):
    with KVStore(path) as kv:
        return kv.count(table)


def test_format_helpers():
    assert format_bytes(512) == "512.0 B"
    assert format_bytes(2048) == "2.0 KB"
    assert format_time(None) == "never"
    assert format_time(0) == "never"


def test_requires_an_action(capsys):
    assert main([]) == 1
    assert "Must specify" in capsys.readouterr().out


def test_cleanup_requires_role(db_path, capsys):
    assert main(["--cleanup", "--db-path", str(db_path)]) == 1
    assert "require --role" in capsys.readouterr().out


def test_missing_database(tmp_path, capsys):
    assert main(["--stats", "--db-path", str(tmp_path / "nope.db")]) == 1
    assert "not found" in capsys.readouterr().out


def test_db_stats(db_path, capsys):
    assert main(["--stats", "--db-path", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert "memories" in out
    assert "TOTAL" in out


def test_role_stats(db_path, capsys):
    assert main(["--stats", "--role", ROLE, "--db-path", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert f"Role {ROLE}" in out
    assert "semantic" in out


def test_cleanup_dry_run(db_path, capsys):
    assert main(["--cleanup", "--role", ROLE, "--dry-run", "--max-age-days", "30", "--db-path", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert "Would remove 2" in out
    assert count_rows(db_path) == 3


def test_cleanup_removes_stale(db_path, capsys):
    assert main(["--cleanup", "--role", ROLE, "--max-age-days", "30", "--db-path", str(db_path)]) == 0

    assert "Removed 2" in capsys.readouterr().out
    assert count_rows(db_path) == 1


def test_purge_role(db_path, capsys):
    assert main(["--purge", "--role", ROLE, "--db-path", str(db_path)]) == 0

    assert "Role purge complete" in capsys.readouterr().out
    assert count_rows(db_path) == 0
    assert count_rows(db_path, "traits") == 0


def test_overview(db_path, capsys):
    assert main(["--overview", "--db-path", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert "Roles with memories: 1" in out
    assert "semantic=3" in out


def test_delete_keeps_constants_without_force(db_path, capsys):
    with KVStore(db_path) as kv:
        ids = [key.split(":", 1)[1] for key, _ in kv.items("memories", f"{ROLE}:")]

    assert main(["--delete", ",".join(ids), "--role", ROLE, "--db-path", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert "Deleted 2" in out
    assert "pass --force" in out
    assert count_rows(db_path) == 1


def test_delete_unknown_id_fails(db_path, capsys):
    assert main(["--delete", "missing", "--role", ROLE, "--db-path", str(db_path)]) == 1
    assert "(not found)" in capsys.readouterr().out


def test_export_then_import(db_path, tmp_path, capsys):
    export_file = tmp_path / "export.json"
    target_db = tmp_path / "target.db"

    assert main(["--export", str(export_file), "--role", ROLE, "--db-path", str(db_path)]) == 0
    assert json.loads(export_file.read_text(encoding="utf-8"))["count"] == 3

    assert main(["--import", str(export_file), "--role", "role-b", "--db-path", str(target_db)]) == 0

    assert "Imported 3 memories into role role-b" in capsys.readouterr().out
    assert count_rows(target_db) == 3


def test_import_unreadable_file(db_path, tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    assert main(["--import", str(bad), "--role", ROLE, "--db-path", str(db_path)]) == 1
    assert "Cannot read import file" in capsys.readouterr().out
