"""Schema migration runner.

The current schema version is stored in PRAGMA user_version; each applied
(or failed) migration is also recorded in the _migrations table for
diagnostics. Migrations apply in ascending version order, exactly once.

Each migration runs inside its own explicit transaction together with the
user_version bump and its _migrations row, so a failure leaves the database
at the previous version.
"""

import logging
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from statsvault.storage.backup import now_ms
from statsvault.storage.errors import MigrationError
from statsvault.storage.schema import (
    CREATE_AUTO_RUN_SESSIONS_SQL,
    CREATE_AUTO_RUN_TASKS_SQL,
    CREATE_MIGRATIONS_TABLE_SQL,
    CREATE_QUERY_EVENTS_SQL,
    CREATE_SESSION_LIFECYCLE_SQL,
    V1_INDEXES_SQL,
    V3_INDEXES_SQL,
)
from statsvault.storage.types import MigrationRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Migration:
    """A single forward schema change."""

    version: int
    description: str
    up: Callable[[sqlite3.Connection], None]


def _migrate_v1(conn: sqlite3.Connection) -> None:
    conn.execute(CREATE_QUERY_EVENTS_SQL)
    conn.execute(CREATE_AUTO_RUN_SESSIONS_SQL)
    conn.execute(CREATE_AUTO_RUN_TASKS_SQL)
    for statement in V1_INDEXES_SQL:
        conn.execute(statement)


def _migrate_v2(conn: sqlite3.Connection) -> None:
    columns = {str(row[1]) for row in conn.execute("PRAGMA table_info(query_events)")}
    if "is_remote" not in columns:
        conn.execute("ALTER TABLE query_events ADD COLUMN is_remote INTEGER NOT NULL DEFAULT 0")


def _migrate_v3(conn: sqlite3.Connection) -> None:
    conn.execute(CREATE_SESSION_LIFECYCLE_SQL)
    for statement in V3_INDEXES_SQL:
        conn.execute(statement)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "Initial schema", _migrate_v1),
    Migration(2, "Add is_remote column to query_events", _migrate_v2),
    Migration(3, "Add session_lifecycle table", _migrate_v3),
)


def get_current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def get_target_version(migrations: Sequence[Migration] = MIGRATIONS) -> int:
    return max((m.version for m in migrations), default=0)


def has_pending_migrations(
    conn: sqlite3.Connection, migrations: Sequence[Migration] = MIGRATIONS
) -> bool:
    return get_current_version(conn) < get_target_version(migrations)


def get_migration_history(conn: sqlite3.Connection) -> list[MigrationRecord]:
    """Return recorded migrations in version order (empty if never migrated)."""
    exists = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = '_migrations'"
    ).fetchone()
    if exists is None:
        return []

    rows = conn.execute(
        "SELECT version, description, applied_at, status, error_message "
        "FROM _migrations ORDER BY version ASC"
    ).fetchall()
    return [
        MigrationRecord(
            version=int(row["version"]),
            description=row["description"],
            applied_at=int(row["applied_at"]),
            status=row["status"],
            error_message=row["error_message"] or None,
        )
        for row in rows
    ]


def _record(
    conn: sqlite3.Connection,
    migration: Migration,
    status: str,
    applied_at: int,
    error_message: str | None = None,
) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO _migrations "
        "(version, description, applied_at, status, error_message) VALUES (?, ?, ?, ?, ?)",
        (migration.version, migration.description, applied_at, status, error_message),
    )


def run_migrations(
    conn: sqlite3.Connection,
    migrations: Sequence[Migration] = MIGRATIONS,
    clock: Callable[[], int] = now_ms,
) -> list[int]:
    """Apply every migration newer than the current version, in order.

    Args:
        conn: Connection in autocommit mode (isolation_level=None)
        migrations: Declared migrations; defaults to the stats schema
        clock: Returns the current time in unix milliseconds, stamped as applied_at

    Returns:
        Versions applied by this call (empty when already up to date)

    Raises:
        MigrationError: If a migration fails; it is rolled back and recorded as failed
    """
    conn.execute(CREATE_MIGRATIONS_TABLE_SQL)

    current = get_current_version(conn)
    pending = sorted((m for m in migrations if m.version > current), key=lambda m: m.version)
    if not pending:
        logger.debug(f"Schema up to date at version {current}")
        return []

    applied: list[int] = []
    for migration in pending:
        logger.info(f"Applying migration v{migration.version}: {migration.description}")
        try:
            conn.execute("BEGIN")
            migration.up(conn)
            conn.execute(f"PRAGMA user_version = {int(migration.version)}")
            _record(conn, migration, "success", clock())
            conn.execute("COMMIT")
        except Exception as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Migration v{migration.version} failed: {e}")
            try:
                _record(conn, migration, "failed", clock(), str(e))
            except sqlite3.Error as record_error:
                logger.warning(f"Could not record failed migration: {record_error}")
            raise MigrationError(migration.version, str(e)) from e
        applied.append(migration.version)

    logger.info(f"Schema migrated from version {current} to {applied[-1]}")
    return applied
