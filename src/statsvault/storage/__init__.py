"""Storage layer for statsvault.

This module provides the self-healing telemetry store:
- StatsDB lifecycle: open, validate, recover, migrate, close
- Backup creation, rotation, listing and restore
- Integrity checks with quarantine of corrupted files
- Size- and time-gated VACUUM

Example:
    >>> from statsvault.storage import StatsDB, QueryEvent
    >>> db = StatsDB()
    >>> await db.initialize()
    >>> db.insert_query_event(QueryEvent("s1", "claude", "user", 1700000000000, 900))
    >>> stats = db.get_aggregated_stats("week")
"""

from statsvault.storage.errors import DatabaseNotInitializedError, MigrationError, StatsDBError
from statsvault.storage.stats_db import StatsDB
from statsvault.storage.types import (
    AutoRunSession,
    AutoRunTask,
    BackupInfo,
    BackupResult,
    ClearOldDataResult,
    CorruptionRecoveryResult,
    IntegrityCheckResult,
    MigrationRecord,
    OpenOutcome,
    QueryEvent,
    SessionLifecycleEvent,
    StatsAggregation,
    StatsFilters,
    VacuumCheckResult,
    VacuumResult,
)

__all__ = [
    "AutoRunSession",
    "AutoRunTask",
    "BackupInfo",
    "BackupResult",
    "ClearOldDataResult",
    "CorruptionRecoveryResult",
    "DatabaseNotInitializedError",
    "IntegrityCheckResult",
    "MigrationError",
    "MigrationRecord",
    "OpenOutcome",
    "QueryEvent",
    "SessionLifecycleEvent",
    "StatsAggregation",
    "StatsDB",
    "StatsDBError",
    "StatsFilters",
    "VacuumCheckResult",
    "VacuumResult",
]
