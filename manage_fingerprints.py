#!/usr/bin/env python3
"""
Fingerprint Management Utility

This script provides utilities to manage stored fingerprint records:
- List all records
- Show the record of a specific target
- Clean up records of targets no longer in the config file
- Show record statistics
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from patrol.config_loader import load_targets
from patrol.errors import PatrolError
from patrol.ports import FingerprintStore
from storage import build_store
from utilities.config import PatrolConfig
from utilities.logger import setup_logging


async def list_all_records(store: FingerprintStore) -> int:
    """List all records in the store."""
    print("\n" + "=" * 80)
    print("ALL FINGERPRINT RECORDS")
    print("=" * 80)

    records = await store.read_all()
    if not records:
        print("No fingerprint records found")
        return 0

    print(f"Found {len(records)} records:")
    print()

    for i, target_id in enumerate(sorted(records), 1):
        record = records[target_id]
        print(f"{i:3d}. Target: {record.target_id}")
        print(f"     URL: {record.url}")
        print(f"     Last checked: {record.last_checked_at.isoformat()}")
        print(f"     Last changed: {record.last_changed_at.isoformat() if record.last_changed_at else 'never'}")
        print(f"     Fingerprint: {record.fingerprint[:16]}...")
        print()
    return len(records)


async def find_record(store: FingerprintStore, target_id: str) -> bool:
    """Show the record of one target."""
    print(f"\nSEARCHING FOR RECORD: {target_id}")
    print("=" * 80)

    record = await store.read(target_id)
    if record is None:
        print("No record found for this target")
        return False

    print(f"URL:          {record.url}")
    print(f"Fingerprint:  {record.fingerprint}")
    print(f"Last checked: {record.last_checked_at.isoformat()}")
    print(f"Last changed: {record.last_changed_at.isoformat() if record.last_changed_at else 'never'}")
    return True


async def cleanup_orphaned_records(store: FingerprintStore, configured_ids: List[str]) -> int:
    """Delete records whose target is no longer configured."""
    print("\nCLEANING UP ORPHANED RECORDS")
    print("=" * 80)

    records = await store.read_all()
    print(f"Initial record count: {len(records)}")

    configured = set(configured_ids)
    orphaned = [target_id for target_id in sorted(records) if target_id not in configured]
    for target_id in orphaned:
        await store.delete(target_id)
        print(f"  removed {target_id}")

    print(f"Orphaned records removed: {len(orphaned)}")
    print(f"Final record count: {len(records) - len(orphaned)}")
    return len(orphaned)


async def show_statistics(store: FingerprintStore, configured_ids: List[str]) -> dict:
    """Show record coverage of the configured targets."""
    print("\nFINGERPRINT STATISTICS")
    print("=" * 80)

    records = await store.read_all()
    configured = set(configured_ids)
    stats = {
        "targets": len(configured),
        "records": len(records),
        "observed": len(configured & set(records)),
        "orphaned": len(set(records) - configured),
        "ever_changed": sum(1 for r in records.values() if r.last_changed_at is not None),
    }

    print(f"Configured targets:    {stats['targets']}")
    print(f"Stored records:        {stats['records']}")
    print(f"Targets observed:      {stats['observed']}")
    print(f"Orphaned records:      {stats['orphaned']}")
    print(f"Records ever changed:  {stats['ever_changed']}")
    if stats["targets"]:
        print(f"Coverage: {stats['observed'] / stats['targets'] * 100:.1f}%")

    if stats["orphaned"]:
        print(f"\nWarning: {stats['orphaned']} orphaned records found!")
        print("   Run cleanup to remove them.")
    return stats


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="manage_fingerprints.py", description="Manage stored fingerprint records.")
    parser.add_argument("-c", "--config-path", type=Path, default=Path("./config.toml"))
    parser.add_argument("-d", "--data-path", type=Path, default=Path("./data.json"))

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="List all records")
    find = commands.add_parser("find", help="Show the record of one target")
    find.add_argument("target_id")
    commands.add_parser("cleanup", help="Remove records of targets no longer configured")
    commands.add_parser("stats", help="Show record statistics")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    args = parse_args(argv)
    settings = PatrolConfig()

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.get_log_file_path(),
        debug=settings.debug
    )

    store = build_store(settings, args.data_path)
    try:
        await store.open()

        if args.command == "list":
            await list_all_records(store)
        elif args.command == "find":
            found = await find_record(store, args.target_id)
            return 0 if found else 1
        else:
            targets = load_targets(args.config_path, settings.default_interval_minutes)
            configured_ids = [target.target_id for target in targets]
            if args.command == "cleanup":
                await cleanup_orphaned_records(store, configured_ids)
            else:
                await show_statistics(store, configured_ids)
        return 0

    except PatrolError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await store.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
