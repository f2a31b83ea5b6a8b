"""Storage layer types for statsvault.

This module defines data structures used by the storage layer:
- Maintenance results: integrity, backup, recovery, vacuum, migrations
- Telemetry records: query events, auto-run sessions/tasks, session lifecycle
- StatsAggregation: summary returned to dashboards

Result objects carry success/error fields so that user-triggered
operations can surface a displayable message instead of raising.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal

StatsTimeRange = Literal["day", "week", "month", "year", "all"]
QuerySource = Literal["user", "auto"]


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert a result dataclass to a JSON-friendly dict (paths become strings)."""

    def _convert(value: Any) -> Any:
        if isinstance(value, Path):
            return str(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {k: _convert(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_convert(v) for v in value]
        return value

    return {k: _convert(v) for k, v in dataclasses.asdict(obj).items()}


# =============================================================================
# Maintenance results
# =============================================================================


@dataclass(frozen=True, slots=True)
class IntegrityCheckResult:
    """Outcome of PRAGMA integrity_check.

    Attributes:
        ok: True only when SQLite reported a single "ok" row
        errors: Diagnostic rows (or exception text) when ok is False
    """

    ok: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class BackupResult:
    """Outcome of an explicit backup request."""

    success: bool
    backup_path: Path | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class BackupInfo:
    """A recognized backup artifact on disk.

    Attributes:
        path: Full path to the backup file
        date: Date key (YYYY-MM-DD, UTC) used for recency ordering
        size: File size in bytes
    """

    path: Path
    date: str
    size: int


@dataclass(frozen=True, slots=True)
class CorruptionRecoveryResult:
    """Outcome of a corruption recovery attempt.

    recovered=True with restored_from_backup=False means no valid backup
    was found and the caller must create a fresh database.
    """

    recovered: bool
    restored_from_backup: bool = False
    backup_path: Path | None = None
    quarantine_path: Path | None = None
    error: str | None = None


class OpenOutcome(str, Enum):
    """How the last initialize() obtained its handle."""

    CREATED_FRESH = "created_fresh"
    OPEN_DIRECTLY = "open_directly"
    RECOVERED = "recovered"


@dataclass(frozen=True, slots=True)
class VacuumResult:
    """Outcome of a VACUUM run."""

    success: bool
    bytes_freed: int = 0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class VacuumCheckResult:
    """Outcome of a size-gated VACUUM check."""

    vacuumed: bool
    database_size: int
    result: VacuumResult | None = None


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """A row of the _migrations table."""

    version: int
    description: str
    applied_at: int
    status: Literal["success", "failed"]
    error_message: str | None = None


# =============================================================================
# Telemetry records
# =============================================================================


@dataclass
class QueryEvent:
    """A single agent query, user-typed or issued by an auto-run."""

    session_id: str
    agent_type: str
    source: QuerySource
    start_time: int
    duration: int
    project_path: str | None = None
    tab_id: str | None = None
    is_remote: bool = False
    id: str | None = None


@dataclass
class AutoRunSession:
    """A batch ("auto-run") execution over a document of tasks."""

    session_id: str
    agent_type: str
    start_time: int
    duration: int = 0
    document_path: str | None = None
    tasks_total: int | None = None
    tasks_completed: int | None = None
    project_path: str | None = None
    id: str | None = None


@dataclass
class AutoRunTask:
    """A single task executed as part of an auto-run session."""

    auto_run_session_id: str
    session_id: str
    agent_type: str
    task_index: int
    start_time: int
    duration: int
    success: bool
    task_content: str | None = None
    id: str | None = None


@dataclass
class SessionLifecycleEvent:
    """Creation and (eventually) closing of an agent session."""

    session_id: str
    agent_type: str
    created_at: int
    project_path: str | None = None
    is_remote: bool = False
    closed_at: int | None = None
    duration: int | None = None
    id: str | None = None


@dataclass(frozen=True, slots=True)
class StatsFilters:
    """Optional equality filters for query event lookups."""

    agent_type: str | None = None
    source: QuerySource | None = None
    project_path: str | None = None
    session_id: str | None = None


@dataclass
class StatsAggregation:
    """Summary statistics over a time range."""

    total_queries: int = 0
    total_duration: int = 0
    avg_duration: float = 0.0
    by_agent: dict[str, dict[str, int]] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=lambda: {"user": 0, "auto": 0})
    by_day: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ClearOldDataResult:
    """Outcome of pruning telemetry rows older than a cutoff."""

    success: bool
    deleted_query_events: int = 0
    deleted_auto_run_sessions: int = 0
    deleted_auto_run_tasks: int = 0
    deleted_session_lifecycle: int = 0
    error: str | None = None
