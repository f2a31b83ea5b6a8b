"""Integrity checking for the stats database and its backups.

check_integrity() inspects an already-open handle. validate_database_file()
is used for files that are not open yet (the live file at startup and backup
candidates during recovery); it additionally rejects files without a SQLite
header, because SQLite treats an empty file as a valid empty database.
"""

import logging
import sqlite3
from pathlib import Path

from statsvault.constants import SQLITE_HEADER_MAGIC
from statsvault.storage.connection import open_connection, sidecar_paths
from statsvault.storage.types import IntegrityCheckResult

logger = logging.getLogger(__name__)


def check_integrity(conn: sqlite3.Connection | None) -> IntegrityCheckResult:
    """Run PRAGMA integrity_check on an open handle.

    Never raises: a missing handle or a failing pragma is reported as a
    failed result with diagnostics.
    """
    if conn is None:
        return IntegrityCheckResult(ok=False, errors=["Database not initialized"])

    try:
        rows = conn.execute("PRAGMA integrity_check").fetchall()
    except sqlite3.Error as e:
        return IntegrityCheckResult(ok=False, errors=[str(e)])

    messages = [str(row[0]) for row in rows]
    if messages == ["ok"]:
        return IntegrityCheckResult(ok=True)
    return IntegrityCheckResult(ok=False, errors=messages or ["integrity_check returned no rows"])


def has_sqlite_header(db_path: Path) -> bool:
    """True if the file starts with the SQLite format 3 magic string."""
    try:
        with open(db_path, "rb") as f:
            return f.read(len(SQLITE_HEADER_MAGIC)) == SQLITE_HEADER_MAGIC
    except OSError:
        return False


def validate_database_file(db_path: Path) -> IntegrityCheckResult:
    """Validate a database file by opening it read-only.

    Callers remove stale WAL/SHM sidecars first; without them the file is
    checked exactly as it would be restored.
    """
    if not has_sqlite_header(db_path):
        return IntegrityCheckResult(
            ok=False, errors=[f"{db_path.name}: file is empty or is not a SQLite database"]
        )

    try:
        conn = open_connection(db_path, readonly=True)
    except sqlite3.Error as e:
        return IntegrityCheckResult(ok=False, errors=[str(e)])

    try:
        return check_integrity(conn)
    finally:
        conn.close()


def remove_stale_wal_files(db_path: Path) -> list[Path]:
    """Delete leftover -wal/-shm sidecars of a database path.

    Leftovers from an unclean exit can make a sound file look corrupt, or
    replay unrelated pages into a restored backup.

    Returns:
        Sidecar paths that were removed
    """
    removed: list[Path] = []
    for sidecar in sidecar_paths(db_path):
        try:
            if sidecar.exists():
                sidecar.unlink()
                removed.append(sidecar)
                logger.debug(f"Removed stale sidecar file: {sidecar}")
        except OSError as e:
            logger.warning(f"Failed to remove stale sidecar {sidecar}: {e}")
    return removed
