"""
CLI utility for role memory administration.

Usage:
    python scripts/memory_admin.py --stats
    python scripts/memory_admin.py --role <role_id> --stats
    python scripts/memory_admin.py --role <role_id> --cleanup --dry-run
    python scripts/memory_admin.py --role <role_id> --cleanup --max-age-days 30
    python scripts/memory_admin.py --role <role_id> --purge
    python scripts/memory_admin.py --overview
    python scripts/memory_admin.py --role <role_id> --delete <id>,<id> [--force]
    python scripts/memory_admin.py --role <role_id> --export memories.json
    python scripts/memory_admin.py --role <role_id> --import memories.json
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from role_memory.config import MemorySettings
from role_memory.memory.policy import EvictionPolicy
from role_memory.memory.store import MemoryStore
from role_memory.persist import TABLES, KVStore
from role_memory.telemetry import setup_logging


def format_bytes(bytes_val: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024:
            return f"{bytes_val:.1f} {unit}"
        bytes_val /= 1024
    return f"{bytes_val:.1f} TB"


def format_time(ts: Optional[float]) -> str:
    """Format unix timestamp as human-readable string."""
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def show_db_stats(kv: KVStore) -> int:
    """Display per-table statistics for the whole database."""
    print(f"📊 Memory database: {kv.db_path}\n")
    print(f"{'Table':<15} {'Count':>10} {'Size':>12} {'Oldest':>20} {'Newest':>20}")
    print("=" * 80)

    total_count = 0
    total_bytes = 0
    for table in TABLES:
        stats = kv.stats(table)
        total_count += stats["count"]
        total_bytes += stats["total_bytes"]
        print(
            f"{table:<15} {stats['count']:>10,} {format_bytes(stats['total_bytes']):>12} "
            f"{format_time(stats['oldest_ts']):>20} {format_time(stats['newest_ts']):>20}"
        )

    print("=" * 80)
    print(f"{'TOTAL':<15} {total_count:>10,} {format_bytes(total_bytes):>12}")
    print()
    return 0


async def show_role_stats(store: MemoryStore, role_id: str) -> int:
    """Display memory statistics for one role."""
    stats = await store.stats(role_id)

    print(f"📊 Role {role_id}\n")
    print(f"   memories:        {stats.total:>8,}")
    for memory_type, count in sorted(stats.by_type.items()):
        print(f"     {memory_type:<15} {count:>8,}")
    print(f"   constant:        {stats.constant_count:>8,}")
    print(f"   avg priority:    {stats.average_priority:>8.1f}")
    print(f"   total accesses:  {stats.total_access_count:>8,}")
    print(f"   traits:          {stats.trait_count:>8,}")
    print(f"   goals:           {stats.goal_count:>8,}")
    print(f"   oldest:          {format_time(stats.oldest_created_at)}")
    print(f"   newest:          {format_time(stats.newest_created_at)}")
    print()
    return 0


async def run_cleanup(
    store: MemoryStore,
    settings: MemorySettings,
    role_id: str,
    dry_run: bool,
    max_age_days: Optional[float],
) -> int:
    """Run the eviction policy for one role and print the report."""
    policy = EvictionPolicy(store, settings.cleanup)
    report = await policy.apply(role_id, dry_run=dry_run, max_age_days=max_age_days)

    verb = "Would remove" if dry_run else "Removed"
    print(f"🗑️  {verb} {report.removed_count} memories for role {role_id}\n")
    for memory_id in report.removed_ids:
        print(f"   {memory_id}  ({report.reasons[memory_id]})")
    print(f"\n   criteria:  {report.criteria}")
    print(f"   remaining: {report.remaining}")

    if dry_run:
        print("\n✅ Dry run complete, nothing removed")
    else:
        print("\n✅ Cleanup complete")
    return 0


async def purge_role(store: MemoryStore, role_id: str) -> int:
    """Delete every record of a role."""
    counts = await store.clear_role(role_id)

    print(f"🗑️  Purging role {role_id}\n")
    for table, count in counts.items():
        print(f"   {table:<15} {count:>10,} entries purged")

    print("\n🔧 Vacuuming database...")
    store.kv.vacuum()
    print("   ✓ Done")
    print("\n✅ Role purge complete")
    return 0


async def show_overview(store: MemoryStore) -> int:
    """Display memory counts for every role."""
    overview = await store.overview()

    print(f"📊 Roles with memories: {len(overview)}\n")
    print(f"{'Role':<30} {'Count':>8}  Types")
    print("=" * 70)
    for role_id, summary in sorted(overview.items()):
        types = ", ".join(f"{t}={n}" for t, n in sorted(summary.by_type.items()))
        print(f"{role_id:<30} {summary.count:>8,}  {types}")
    print()
    return 0


async def delete_memories(store: MemoryStore, role_id: str, memory_ids: List[str], force: bool) -> int:
    """Delete the given memories of a role."""
    result = await store.remove_many(role_id, memory_ids, force=force)

    print(f"🗑️  Deleted {len(result.deleted)} memories for role {role_id}")
    for memory_id in result.kept_constant:
        print(f"   {memory_id}  (constant, pass --force to delete)")
    for memory_id in result.not_found:
        print(f"   {memory_id}  (not found)")
    return 0 if not result.not_found else 1


async def export_memories(store: MemoryStore, role_id: str, output: Path) -> int:
    """Write a role's memories to a JSON file."""
    payload = await store.export_role(role_id)
    output.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    print(f"✅ Exported {payload['count']} memories for role {role_id} to {output}")
    return 0


async def import_memories(store: MemoryStore, role_id: str, source: Path) -> int:
    """Load memories from an export file into a role."""
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"❌ Cannot read import file {source}: {exc}")
        return 1

    records = payload.get("memories", []) if isinstance(payload, dict) else payload
    if not isinstance(records, list):
        print(f"❌ Import file {source} holds no memory list")
        return 1

    report = await store.import_entries(role_id, records)

    print(f"📥 Imported {report.imported_count} memories into role {role_id}")
    for original_id, new_id in report.renamed.items():
        print(f"   {original_id} -> {new_id}  (id already in use)")
    for error in report.errors:
        print(f"   ⚠️  {error}")
    return 0 if not report.errors else 1


async def run_actions(args: argparse.Namespace, settings: MemorySettings) -> int:
    db_path = Path(settings.db_path)
    if not db_path.exists() and args.import_file is None:
        print(f"❌ Memory database not found: {db_path}")
        return 1

    with KVStore(db_path) as kv:
        store = MemoryStore(kv)

        if args.stats:
            if args.role:
                exit_code = await show_role_stats(store, args.role)
            else:
                exit_code = show_db_stats(kv)
            if exit_code != 0:
                return exit_code

        if args.overview:
            exit_code = await show_overview(store)
            if exit_code != 0:
                return exit_code

        if args.import_file is not None:
            exit_code = await import_memories(store, args.role, args.import_file)
            if exit_code != 0:
                return exit_code

        if args.delete:
            memory_ids = [i.strip() for i in args.delete.split(",") if i.strip()]
            exit_code = await delete_memories(store, args.role, memory_ids, args.force)
            if exit_code != 0:
                return exit_code

        if args.cleanup:
            exit_code = await run_cleanup(store, settings, args.role, args.dry_run, args.max_age_days)
            if exit_code != 0:
                return exit_code

        if args.export is not None:
            exit_code = await export_memories(store, args.role, args.export)
            if exit_code != 0:
                return exit_code

        if args.purge:
            return await purge_role(store, args.role)

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage role memory (stats, cleanup, deletes, import / export, purges)"
    )
    parser.add_argument("--role", type=str, help="Role id to operate on")
    parser.add_argument("--stats", action="store_true", help="Show statistics (database-wide without --role)")
    parser.add_argument("--cleanup", action="store_true", help="Run the eviction policy for --role")
    parser.add_argument("--dry-run", action="store_true", help="With --cleanup, report without removing")
    parser.add_argument(
        "--max-age-days",
        type=float,
        default=None,
        help="With --cleanup, also remove unprotected memories not accessed for this many days",
    )
    parser.add_argument("--purge", action="store_true", help="Delete every record of --role")
    parser.add_argument("--overview", action="store_true", help="Show memory counts for every role")
    parser.add_argument("--delete", type=str, metavar="IDS", help="Comma-separated memory ids of --role to delete")
    parser.add_argument("--force", action="store_true", help="With --delete, also delete constant memories")
    parser.add_argument("--export", type=Path, metavar="FILE", help="Write the memories of --role to a JSON file")
    parser.add_argument(
        "--import",
        dest="import_file",
        type=Path,
        metavar="FILE",
        help="Load memories from an export file into --role",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database (default: ROLE_MEMORY_DB_PATH or data/memory/role_memory.db)",
    )
    return parser


def main(argv: Optional[list] = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Require at least one action
    role_actions = any([
        args.cleanup,
        args.purge,
        args.delete,
        args.export is not None,
        args.import_file is not None,
    ])
    if not (args.stats or args.overview or role_actions):
        parser.print_help()
        print("\n❌ Error: Must specify --stats, --overview, --cleanup, --delete, --export, --import or --purge")
        return 1

    if role_actions and not args.role:
        print("❌ Error: --cleanup, --delete, --export, --import and --purge require --role")
        return 1

    settings = MemorySettings.from_env()
    if args.db_path is not None:
        settings = settings.model_copy(update={"db_path": str(args.db_path)})
    setup_logging(settings.log_level)

    return asyncio.run(run_actions(args, settings))


if __name__ == "__main__":
    sys.exit(main())
