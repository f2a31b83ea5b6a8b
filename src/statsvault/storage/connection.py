"""Connection helpers shared by the storage components."""

import sqlite3
from pathlib import Path

from statsvault.constants import DEFAULT_BUSY_TIMEOUT_MS, SHM_SUFFIX, WAL_SUFFIX


def open_connection(
    db_path: Path,
    *,
    readonly: bool = False,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> sqlite3.Connection:
    """Open a SQLite connection in autocommit mode.

    Transactions are opened explicitly (BEGIN/COMMIT) by the code that needs
    them, which keeps VACUUM and journal-mode changes outside any implicit
    transaction.

    Args:
        db_path: Database file path
        readonly: Open with a mode=ro URI; the file must already exist
        busy_timeout_ms: How long to wait on a locked database

    Raises:
        sqlite3.Error: If the file cannot be opened
    """
    if readonly:
        conn = sqlite3.connect(
            f"{db_path.resolve().as_uri()}?mode=ro",
            uri=True,
            isolation_level=None,
            check_same_thread=False,
        )
    else:
        conn = sqlite3.connect(
            str(db_path),
            isolation_level=None,
            check_same_thread=False,
        )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {max(0, int(busy_timeout_ms))}")
    return conn


def sidecar_paths(db_path: Path) -> tuple[Path, Path]:
    """Return the (-wal, -shm) sidecar paths for a database file."""
    return (
        db_path.with_name(db_path.name + WAL_SUFFIX),
        db_path.with_name(db_path.name + SHM_SUFFIX),
    )
