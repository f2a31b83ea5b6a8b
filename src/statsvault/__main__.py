"""Command-line maintenance entry point for statsvault.

Usage:
    python -m statsvault [--data-dir DIR] [--log-level LEVEL] COMMAND

    Commands:
        status                  Open the database (recovering, migrating and taking
                                the daily backup as needed), then report path,
                                size, schema versions and integrity
        check                   Read-only integrity check (exit 1 on failure)
        backup                  Create an ad-hoc backup
        backups                 List available backups, newest first
        restore PATH            Validate PATH, then restore it over the database
        vacuum [--threshold N]  VACUUM now, or only when the file is >= N bytes
        migrations              Show the migration history

Every command prints one JSON object to stdout. Logging goes to stderr so
that stdout stays machine-readable.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from statsvault import __version__
from statsvault.config import StatsSettings
from statsvault.storage import StatsDB, StatsDBError
from statsvault.storage.integrity import remove_stale_wal_files, validate_database_file
from statsvault.storage.types import to_dict

# Load .env file - must be done before any config access
load_dotenv()

logger = logging.getLogger(__name__)


def setup_logging(log_level: str) -> None:
    """Configure logging to stderr (stdout carries JSON output)."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="statsvault",
        description="Maintenance commands for the statsvault telemetry database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding stats.db (default: STATSVAULT_DATA_DIR or ~/.statsvault)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: STATSVAULT_LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser(
        "status",
        help="Open the database like an application would (may quarantine, restore, "
        "migrate, back up and vacuum), then show its status; check is the read-only alternative",
    )
    subparsers.add_parser("check", help="Run a read-only integrity check")
    subparsers.add_parser("backup", help="Create an ad-hoc backup")
    subparsers.add_parser("backups", help="List available backups")
    restore_parser = subparsers.add_parser("restore", help="Restore the database from a backup")
    restore_parser.add_argument("path", type=Path, help="Backup file to restore")
    vacuum_parser = subparsers.add_parser("vacuum", help="Reclaim free space")
    vacuum_parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        metavar="BYTES",
        help="Only vacuum when the database is at least this large",
    )
    subparsers.add_parser("migrations", help="Show migration history")

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> StatsSettings:
    overrides: dict[str, Any] = {}
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    return StatsSettings(**overrides)


# =============================================================================
# Commands
# =============================================================================


async def cmd_status(db: StatsDB) -> tuple[dict[str, Any], int]:
    """Report on the database after a full initialize().

    Opening can quarantine and restore a corrupt file, run migrations, take
    the daily backup and run the scheduled VACUUM. cmd_check does none of that.
    """
    await db.initialize()
    try:
        integrity = db.check_integrity()
        return {
            "db_path": str(db.get_db_path()),
            "size": await db.get_database_size(),
            "open_outcome": db.last_open_outcome.value if db.last_open_outcome else None,
            "current_version": db.get_current_version(),
            "target_version": db.get_target_version(),
            "integrity": to_dict(integrity),
            "earliest_timestamp": db.get_earliest_timestamp(),
            "backups": len(db.get_available_backups()),
        }, 0
    finally:
        db.close()


async def cmd_check(db: StatsDB) -> tuple[dict[str, Any], int]:
    db_path = db.get_db_path()
    if not db_path.exists():
        return {"ok": False, "errors": [f"Database file does not exist: {db_path}"]}, 1
    result = validate_database_file(db_path)
    return to_dict(result), 0 if result.ok else 1


async def cmd_backup(db: StatsDB) -> tuple[dict[str, Any], int]:
    await db.initialize()
    try:
        result = db.backup_database()
    finally:
        db.close()
    return to_dict(result), 0 if result.success else 1


async def cmd_backups(db: StatsDB) -> tuple[dict[str, Any], int]:
    return {"backups": [to_dict(b) for b in db.get_available_backups()]}, 0


async def cmd_restore(db: StatsDB, backup_path: Path) -> tuple[dict[str, Any], int]:
    if not backup_path.exists():
        return {"success": False, "error": f"Backup file does not exist: {backup_path}"}, 1

    remove_stale_wal_files(backup_path)
    check = validate_database_file(backup_path)
    if not check.ok:
        logger.error(f"Refusing to restore {backup_path}: {', '.join(check.errors)}")
        return {"success": False, "error": "Backup failed integrity check", "errors": check.errors}, 1

    success = db.restore_from_backup(backup_path)
    return {"success": success, "backup_path": str(backup_path)}, 0 if success else 1


async def cmd_vacuum(db: StatsDB, threshold: int | None) -> tuple[dict[str, Any], int]:
    await db.initialize()
    try:
        if threshold is None:
            result = await db.vacuum()
            return to_dict(result), 0 if result.success else 1
        check = await db.vacuum_if_needed(threshold)
        failed = check.result is not None and not check.result.success
        return to_dict(check), 1 if failed else 0
    finally:
        db.close()


async def cmd_migrations(db: StatsDB) -> tuple[dict[str, Any], int]:
    await db.initialize()
    try:
        return {
            "current_version": db.get_current_version(),
            "target_version": db.get_target_version(),
            "history": [to_dict(record) for record in db.get_migration_history()],
        }, 0
    finally:
        db.close()


async def run_command(args: argparse.Namespace, db: StatsDB) -> tuple[dict[str, Any], int]:
    if args.command == "status":
        return await cmd_status(db)
    if args.command == "check":
        return await cmd_check(db)
    if args.command == "backup":
        return await cmd_backup(db)
    if args.command == "backups":
        return await cmd_backups(db)
    if args.command == "restore":
        return await cmd_restore(db, args.path)
    if args.command == "vacuum":
        return await cmd_vacuum(db, args.threshold)
    if args.command == "migrations":
        return await cmd_migrations(db)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Process exit code (0 on success)
    """
    args = parse_arguments(argv)
    settings = build_settings(args)
    setup_logging(settings.log_level)

    db = StatsDB(settings=settings)
    try:
        output, code = asyncio.run(run_command(args, db))
    except StatsDBError as e:
        logger.error(f"statsvault {args.command} failed: {e}")
        output, code = {"error": str(e)}, 1

    print(json.dumps(output, indent=2))
    return code


if __name__ == "__main__":
    sys.exit(main())
