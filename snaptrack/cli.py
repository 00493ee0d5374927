"""
CLI - Command-line interface for snaptrack.

Versions live in the configured store; the live model is a JSON model file
loaded into an InMemoryDocument (--model).
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import Config
from .errors import SnapTrackError
from .host import InMemoryDocument
from .snapshot import Category, SnapshotManager
from .store import CachingSnapshotStore, FileSnapshotStore, InMemorySnapshotStore, PostgresSnapshotStore
from .ui import ConsoleUI, setup_logging

logger = logging.getLogger(__name__)

SCOPE_CHOICES = ["all", "selected", "deleted", "deleted-only", "unplaced", "unplaced-only"]


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="snaptrack",
        description="Parameter snapshot versioning, comparison and restore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    snaptrack versions
    snaptrack --model model.json capture v1
    snaptrack --model model.json compare v1
    snaptrack compare-versions v1 v2
    snaptrack --model model.json duplicates --fix --save
    snaptrack --model model.json restore v1 --param Comments --dry-run
    snaptrack --model model.json restore v1 --scope deleted-only --save

Environment Variables:
    SNAPTRACK_PROJECT_ID    Project id
    SNAPTRACK_USER          User recorded on captures
    SNAPTRACK_DB_PASSWORD   PostgreSQL password
    SNAPTRACK_DSN           PostgreSQL connection string (selects the postgres store)
        """,
    )

    parser.add_argument("--config", help="Path to a TOML config file")
    parser.add_argument("--project", help="Project id")
    parser.add_argument("--workspace", help="Workspace directory of the file store")
    parser.add_argument("--dsn", help="PostgreSQL connection string")
    parser.add_argument("--model", help="JSON model file holding the live entities")
    parser.add_argument(
        "--category",
        choices=[c.value for c in Category],
        help="Restrict to one category",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Only print errors")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("versions", help="List versions")

    p = sub.add_parser("compare", help="Compare the model against a version")
    p.add_argument("version")
    p.add_argument("--include-unchanged", action="store_true", help="List unchanged entities too")

    p = sub.add_parser("compare-versions", help="Compare two versions")
    p.add_argument("baseline")
    p.add_argument("target")
    p.add_argument("--include-unchanged", action="store_true", help="List unchanged entities too")

    p = sub.add_parser("history", help="Show one identifier across versions")
    p.add_argument("track_id")

    p = sub.add_parser("capture", help="Capture the model into a version")
    p.add_argument("version")
    p.add_argument("--official", action="store_true", help="Mark the version official (immutable)")

    p = sub.add_parser("duplicates", help="Detect duplicated identifiers")
    p.add_argument("--fix", action="store_true", help="Regenerate identifiers of non-canonical elements")
    p.add_argument("--save", action="store_true", help="Write the fixed model back to --model")

    p = sub.add_parser("restore", help="Restore parameters from a version")
    p.add_argument("version")
    p.add_argument("--param", action="append", dest="params", metavar="NAME",
                   help="Parameter to restore (repeatable, default: all restorable)")
    p.add_argument("--scope", choices=SCOPE_CHOICES, default="all")
    p.add_argument("--backup", dest="backup", action="store_true", default=None,
                   help="Capture a backup version first")
    p.add_argument("--no-backup", dest="backup", action="store_false")
    p.add_argument("--track-id", action="append", dest="track_ids", metavar="ID",
                   help="Restrict to this identifier (repeatable)")
    p.add_argument("--dry-run", action="store_true", help="Only show the planned writes")
    p.add_argument("--save", action="store_true", help="Write the restored model back to --model")

    p = sub.add_parser("delete-version", help="Delete a draft version")
    p.add_argument("version")

    return parser.parse_args(argv)


def create_store(config: Config):
    """Build the configured snapshot store."""
    backend = config.store.backend
    if backend == "memory":
        return InMemorySnapshotStore()
    if backend == "postgres":
        store = PostgresSnapshotStore.connect(
            dsn=config.store.dsn,
            host=config.store.host,
            port=config.store.port,
            user=config.store.user,
            password=config.store.password,
            database=config.store.name,
            page_size=config.store.page_size,
        )
        store.ensure_schema()
        if config.store.cache_ttl > 0:
            return CachingSnapshotStore(store, ttl_seconds=config.store.cache_ttl)
        return store
    return FileSnapshotStore(Path(config.store.workspace))


def load_model(path: Optional[str]) -> Optional[InMemoryDocument]:
    if not path:
        return None
    model_path = Path(path)
    if not model_path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")
    return InMemoryDocument.load(model_path)


def run_command(args, manager: SnapshotManager, ui: ConsoleUI) -> int:
    """Dispatch one sub-command. Returns the exit code."""
    category = Category.parse(args.category) if args.category else None
    command = args.command

    if command == "versions":
        ui.print_versions(manager.versions(category))
        return 0

    if command == "history":
        ui.print_history(args.track_id, manager.history(args.track_id))
        return 0

    if command == "compare-versions":
        items = manager.compare_versions(args.baseline, args.target, category, args.include_unchanged or None)
        ui.print_comparison(items, title=f"{args.baseline} -> {args.target}")
        return 0

    if command == "delete-version":
        removed = manager.delete_version(args.version)
        ui.print_success(f"Deleted '{args.version}' ({removed} records)")
        return 0

    if manager.document is None:
        ui.print_error(f"'{command}' needs a model file (--model)")
        return 1

    if command == "compare":
        items = manager.compare_current(args.version, category, args.include_unchanged or None)
        ui.print_comparison(items, title=f"Model vs {args.version}")
        return 0

    if command == "capture":
        records = manager.capture_version(args.version, category, is_official=args.official)
        ui.print_success(f"Captured {len(records)} records into '{args.version}'")
        return 0

    if command == "duplicates":
        if not args.fix:
            ui.print_duplicates(manager.detect_duplicates(category))
            return 0
        groups, count = manager.fix_duplicates(category)
        ui.print_duplicates(groups)
        ui.print_success(f"Re-identified {count} elements")
        if args.save:
            manager.document.save(Path(args.model))
        return 0

    if command == "restore":
        if args.dry_run:
            preview = manager.preview_restore(
                args.version, args.params, args.scope, args.track_ids, category,
            )
            ui.print_preview(preview)
            return 1 if any(e.kind == "STRUCTURAL" for e in preview.errors) else 0

        outcome = manager.restore(
            args.version,
            parameters=args.params,
            scope=args.scope,
            track_ids=args.track_ids,
            create_backup=args.backup,
            category=category,
        )
        ui.print_outcome(outcome)
        if outcome.success and args.save:
            manager.document.save(Path(args.model))
        return 0 if outcome.success else 1

    ui.print_error(f"Unknown command: {command}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = Config.load(args.config)
    except (FileNotFoundError, ValueError) as e:
        ConsoleUI().print_error(str(e))
        return 1
    config.override_from_args(args)

    setup_logging(config.output.log_level, config.output.quiet)
    ui = ConsoleUI(quiet=config.output.quiet)

    errors = config.validate()
    if errors:
        for error in errors:
            ui.print_error(error)
        return 1
    store = None
    try:
        store = create_store(config)
        document = load_model(args.model)
        manager = SnapshotManager(store, document, config)
        return run_command(args, manager, ui)
    except (SnapTrackError, FileNotFoundError) as e:
        logger.debug("Command failed", exc_info=True)
        ui.print_error(str(e))
        return 1
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
