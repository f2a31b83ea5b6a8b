"""Lifecycle manager for the stats database.

StatsDB owns the single SQLite handle. initialize() always ends with a
handle that passed the integrity check, or raises StatsDBError:

1. A missing file is created fresh
2. An existing file is opened directly when it validates
3. Otherwise it is quarantined and the newest valid backup restored, or a
   fresh database created when no backup validates

After opening, migrations run, a daily backup is taken and the weekly
VACUUM check runs. Maintenance failures are logged, never raised.

Example:
    >>> db = StatsDB(Path("~/.statsvault/stats.db").expanduser())
    >>> await db.initialize()
    >>> db.insert_query_event(QueryEvent("s1", "claude", "user", now_ms(), 1200))
    >>> db.close()
"""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

from statsvault.config import StatsSettings
from statsvault.storage import migrations
from statsvault.storage.backup import BackupManager, now_ms
from statsvault.storage.connection import open_connection
from statsvault.storage.errors import DatabaseNotInitializedError, StatsDBError
from statsvault.storage.integrity import check_integrity
from statsvault.storage.meta import MetaStore
from statsvault.storage.recovery import CorruptionRecovery
from statsvault.storage.reports import StatsReports
from statsvault.storage.telemetry import (
    AutoRunRepository,
    QueryEventRepository,
    SessionLifecycleRepository,
)
from statsvault.storage.types import (
    AutoRunSession,
    AutoRunTask,
    BackupInfo,
    BackupResult,
    ClearOldDataResult,
    IntegrityCheckResult,
    MigrationRecord,
    OpenOutcome,
    QueryEvent,
    SessionLifecycleEvent,
    StatsAggregation,
    StatsFilters,
    StatsTimeRange,
    VacuumCheckResult,
    VacuumResult,
)
from statsvault.storage.vacuum import VacuumScheduler, file_size

logger = logging.getLogger(__name__)


class StatsDB:
    """Self-healing, single-writer SQLite store for usage telemetry.

    Args:
        db_path: Database file path. Defaults to settings.get_db_path()
        settings: Retention, vacuum and timeout settings. Defaults to StatsSettings()
        clock: Returns the current time in unix milliseconds
    """

    def __init__(
        self,
        db_path: Path | None = None,
        settings: StatsSettings | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings or StatsSettings()
        self.db_path = Path(db_path) if db_path is not None else self.settings.get_db_path()
        self._clock = clock

        self._conn: sqlite3.Connection | None = None
        self._initialized = False
        self.last_open_outcome: OpenOutcome | None = None

        self._query_events: QueryEventRepository | None = None
        self._auto_runs: AutoRunRepository | None = None
        self._lifecycle: SessionLifecycleRepository | None = None
        self._reports: StatsReports | None = None

        self.backups = BackupManager(self.db_path, lambda: self._conn, clock)
        self.vacuum_scheduler = VacuumScheduler(self.db_path, lambda: self._conn, clock)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Open (recovering if needed) and migrate the database.

        Idempotent: a second call on an initialized instance does nothing.

        Raises:
            StatsDBError: If no valid database can be opened, recovered or created
            MigrationError: If a schema migration fails
        """
        if self._initialized:
            return

        try:
            await asyncio.to_thread(self.db_path.parent.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StatsDBError(f"Failed to create data directory: {e}") from e

        if await asyncio.to_thread(self.db_path.exists):
            recovery = CorruptionRecovery(
                self.db_path, self.backups, self._clock, self.settings.busy_timeout_ms
            )
            opened = recovery.open_validated()
            conn, outcome = opened.connection, opened.outcome
        else:
            try:
                conn = open_connection(self.db_path, busy_timeout_ms=self.settings.busy_timeout_ms)
            except sqlite3.Error as e:
                raise StatsDBError(f"Failed to create database: {e}") from e
            outcome = OpenOutcome.CREATED_FRESH

        if conn is None:
            raise StatsDBError("Failed to open or recover database")

        try:
            conn.execute("PRAGMA journal_mode = WAL").fetchone()
            MetaStore(conn).ensure_schema()
            migrations.run_migrations(conn, clock=self._clock)
        except Exception:
            conn.close()
            raise

        self._conn = conn
        self._query_events = QueryEventRepository(conn, self._clock)
        self._auto_runs = AutoRunRepository(conn, self._clock)
        self._lifecycle = SessionLifecycleRepository(conn, self._clock)
        self._reports = StatsReports(conn, self._clock)
        self._initialized = True
        self.last_open_outcome = outcome
        logger.info(f"Stats database initialized at {self.db_path} ({outcome.value})")

        await self.backups.ensure_daily_backup(self.settings.backup_retention_days)
        await self.vacuum_scheduler.vacuum_if_needed_weekly(
            self.settings.vacuum_interval_ms, self.settings.vacuum_threshold_bytes
        )

    def close(self) -> None:
        """Close the handle and drop everything bound to it."""
        self._query_events = None
        self._auto_runs = None
        self._lifecycle = None
        self._reports = None
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing stats database: {e}")
            self._conn = None
        if self._initialized:
            logger.info("Stats database closed")
        self._initialized = False

    def is_ready(self) -> bool:
        return self._initialized and self._conn is not None

    @property
    def database(self) -> sqlite3.Connection:
        """The live connection.

        Raises:
            DatabaseNotInitializedError: If initialize() has not completed
        """
        if self._conn is None:
            raise DatabaseNotInitializedError()
        return self._conn

    def get_db_path(self) -> Path:
        return self.db_path

    async def get_database_size(self) -> int:
        return await file_size(self.db_path)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def vacuum(self) -> VacuumResult:
        return await self.vacuum_scheduler.vacuum()

    async def vacuum_if_needed(self, threshold_bytes: int | None = None) -> VacuumCheckResult:
        if threshold_bytes is None:
            threshold_bytes = self.settings.vacuum_threshold_bytes
        return await self.vacuum_scheduler.vacuum_if_needed(threshold_bytes)

    def check_integrity(self) -> IntegrityCheckResult:
        return check_integrity(self._conn)

    def backup_database(self) -> BackupResult:
        return self.backups.backup_now()

    def get_available_backups(self) -> list[BackupInfo]:
        return self.backups.list_backups()

    def restore_from_backup(self, backup_path: Path) -> bool:
        """Replace the live database with a backup.

        The handle is closed first and not reopened; call initialize()
        afterwards to use the restored data.
        """
        self.close()
        return self.backups.restore(Path(backup_path))

    def get_earliest_timestamp(self) -> int | None:
        """Oldest recorded time across all telemetry tables, None if empty or on error."""
        if self._reports is None:
            return None
        try:
            return self._reports.earliest_timestamp()
        except sqlite3.Error as e:
            logger.error(f"Failed to get earliest timestamp: {e}")
            return None

    def get_meta(self, key: str) -> str | None:
        return MetaStore(self.database).get(key)

    def set_meta(self, key: str, value: str | int) -> None:
        MetaStore(self.database).set(key, value)

    # =========================================================================
    # Migration diagnostics
    # =========================================================================

    def get_migration_history(self) -> list[MigrationRecord]:
        return migrations.get_migration_history(self.database)

    def get_current_version(self) -> int:
        return migrations.get_current_version(self.database)

    def get_target_version(self) -> int:
        return migrations.get_target_version()

    def has_pending_migrations(self) -> bool:
        return migrations.has_pending_migrations(self.database)

    # =========================================================================
    # Telemetry (delegated)
    # =========================================================================

    def _require(self, repository: Any) -> Any:
        if repository is None:
            raise DatabaseNotInitializedError()
        return repository

    def insert_query_event(self, event: QueryEvent) -> str:
        return self._require(self._query_events).insert(event)

    def get_query_events(
        self, time_range: StatsTimeRange, filters: StatsFilters | None = None
    ) -> list[QueryEvent]:
        return self._require(self._query_events).list_events(time_range, filters)

    def insert_auto_run_session(self, session: AutoRunSession) -> str:
        return self._require(self._auto_runs).insert_session(session)

    def update_auto_run_session(self, auto_run_id: str, **fields: Any) -> bool:
        return self._require(self._auto_runs).update_session(auto_run_id, **fields)

    def get_auto_run_sessions(self, time_range: StatsTimeRange) -> list[AutoRunSession]:
        return self._require(self._auto_runs).list_sessions(time_range)

    def insert_auto_run_task(self, task: AutoRunTask) -> str:
        return self._require(self._auto_runs).insert_task(task)

    def get_auto_run_tasks(self, auto_run_session_id: str) -> list[AutoRunTask]:
        return self._require(self._auto_runs).list_tasks(auto_run_session_id)

    def record_session_created(self, event: SessionLifecycleEvent) -> str:
        return self._require(self._lifecycle).record_created(event)

    def record_session_closed(self, session_id: str, closed_at: int) -> bool:
        return self._require(self._lifecycle).record_closed(session_id, closed_at)

    def get_session_lifecycle_events(
        self, time_range: StatsTimeRange
    ) -> list[SessionLifecycleEvent]:
        return self._require(self._lifecycle).list_events(time_range)

    def get_aggregated_stats(self, time_range: StatsTimeRange) -> StatsAggregation:
        return self._require(self._reports).aggregate(time_range)

    def clear_old_data(self, older_than_days: int) -> ClearOldDataResult:
        """Prune old telemetry rows. Never raises."""
        if self._reports is None:
            return ClearOldDataResult(success=False, error="Database not initialized")
        return self._reports.clear_old_data(older_than_days)

    def export_to_csv(self, time_range: StatsTimeRange) -> str:
        return self._require(self._reports).export_csv(time_range)
