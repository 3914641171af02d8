"""
arcapp/cli.py -- Command line interface for the ARC catalog.

Commands:
    check     Run the integrity check and list the problems found
    repair    Run the integrity check and apply the automatic fixes
    backup    Write a backup archive (optionally split into parts)
    restore   Restore a backup archive or split backup
    stats     Print catalog statistics
    recount   Recalculate tag usage counters

Usage::

    arc-catalog check
    arc-catalog repair --yes
    arc-catalog backup /backups/arc_backup.zip --parts 4
    arc-catalog restore /backups/arc_backup.arc.part01 --target /media/arc
    arc-catalog --working-dir /media/arc --database ./catalog.db stats
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from arcapp.paths import load_config
from arcengine.backup_manager import ArchiveBuilder, write_manifest
from arcengine.entity_store import EntityStore
from arcengine.errors import CatalogError
from arcengine.integrity import IntegrityRepairer, IntegrityValidator, IssueKind, describe_issues
from arcengine.parts import is_part_file
from arcengine.restore import RestoreCoordinator, inspect_archive

logger = logging.getLogger("arcapp")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _print_progress(event: dict) -> None:
    print(f"\r  {event['percent']:3d}%", end="", flush=True)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_check(args, config, store: EntityStore) -> int:
    result = IntegrityValidator(store).validate()
    print(describe_issues(result.issues))
    return 0 if result.is_valid else 1


def cmd_repair(args, config, store: EntityStore) -> int:
    result = IntegrityValidator(store).validate()
    print(describe_issues(result.issues))
    fixable = [i for i in result.issues if i.kind is not IssueKind.MISSING_FILE]
    if not fixable:
        return 0 if result.is_valid else 1

    if not args.yes:
        answer = input("\nApply the repairs listed above? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Nothing was changed.")
            return 1

    fixed = IntegrityRepairer(store).repair(result.issues)
    print(f"\nDone! Applied {fixed} {'fix' if fixed == 1 else 'fixes'}.")
    return 0


def cmd_backup(args, config, store: EntityStore) -> int:
    result = ArchiveBuilder(config).create_backup(
        args.output,
        config.working_dir,
        args.parts,
        store.export_json(),
        progress=None if args.quiet else _print_progress,
    )
    if not args.quiet:
        print()
    manifest = result["manifest"]
    if args.manifest:
        write_manifest(manifest, args.manifest)
    print(
        f"Backup created: {result['file_count']} file(s), "
        f"{result['size'] / 1024 / 1024:.1f} MB in {result['duration']:.1f} s"
    )
    for name in manifest.part_files:
        print(f"  {name}")
    return 0


def cmd_restore(args, config, store: EntityStore) -> int:
    target = args.target or str(config.working_dir)
    if not is_part_file(args.archive):
        info = inspect_archive(args.archive)
        print(
            f"Archive contains {info['entries']} file(s), "
            f"{info['uncompressed_size'] / 1024 / 1024:.1f} MB"
            f"{'' if info['has_database'] else ' (no catalog data)'}"
        )

    result = RestoreCoordinator(config).restore_backup(
        args.archive, target, progress=None if args.quiet else _print_progress,
    )
    if not args.quiet:
        print()
    print(f"Restored {result.files_restored} file(s) to {target}")

    if result.serialized_store is None:
        print("The backup has no catalog data; only files were restored.")
    elif args.no_import:
        print("Catalog data was not imported (--no-import).")
    else:
        counts = store.import_snapshot(result.serialized_store, new_working_dir=target)
        print(f"Imported {counts['cards']} card(s) and {counts['tags']} tag(s).")
    return 0


def cmd_stats(args, config, store: EntityStore) -> int:
    print(json.dumps(store.get_statistics(), indent=2))
    return 0


def cmd_recount(args, config, store: EntityStore) -> int:
    fixed = store.recalculate_tag_counts()
    print(f"Corrected {fixed} tag {'counter' if fixed == 1 else 'counters'}.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="arc-catalog", description="ARC media catalog tools")
    parser.add_argument("--working-dir", help="Media folder (default: from settings)")
    parser.add_argument("--database", help="Catalog database file (default: user data dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("check", help="Run the integrity check")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("repair", help="Check and apply automatic fixes")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_repair)

    p = sub.add_parser("backup", help="Write a backup archive")
    p.add_argument("output", help="Destination .zip path")
    p.add_argument("--parts", type=int, default=1, help="Split into N parts (1-99)")
    p.add_argument("--manifest", help="Also write the manifest JSON to this path")
    p.add_argument("-q", "--quiet", action="store_true", help="No progress output")
    p.set_defaults(func=cmd_backup)

    p = sub.add_parser("restore", help="Restore a backup")
    p.add_argument("archive", help="Backup .zip or any .arc.partNN file")
    p.add_argument("--target", help="Folder to restore into (default: working dir)")
    p.add_argument("--no-import", action="store_true", help="Restore files only")
    p.add_argument("-q", "--quiet", action="store_true", help="No progress output")
    p.set_defaults(func=cmd_restore)

    p = sub.add_parser("stats", help="Print catalog statistics")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("recount", help="Recalculate tag usage counters")
    p.set_defaults(func=cmd_recount)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(working_dir=args.working_dir, database_path=args.database)
    try:
        with EntityStore(config) as store:
            return args.func(args, config, store)
    except (CatalogError, ValueError, OSError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
