"""Telemetry record storage: query events, auto-run sessions/tasks, session lifecycle.

Repositories are bound to one connection and are discarded when StatsDB
closes, so nothing tied to a closed handle outlives it.
"""

import sqlite3
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from statsvault.constants import DAY_MS, TIME_RANGE_DAYS
from statsvault.storage.types import (
    AutoRunSession,
    AutoRunTask,
    QueryEvent,
    SessionLifecycleEvent,
    StatsFilters,
    StatsTimeRange,
)


def range_start(time_range: StatsTimeRange, now: int) -> int:
    """Lower bound (unix ms) of a named time range."""
    if time_range not in TIME_RANGE_DAYS:
        raise ValueError(f"Unknown time range: {time_range!r}")
    days = TIME_RANGE_DAYS[time_range]
    return 0 if days is None else now - days * DAY_MS


def _new_id() -> str:
    return uuid4().hex


class QueryEventRepository:
    """Insert and query rows of the query_events table."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], int]):
        self._conn = conn
        self._clock = clock

    def insert(self, event: QueryEvent) -> str:
        event_id = event.id or _new_id()
        self._conn.execute(
            """
            INSERT INTO query_events
                (id, session_id, agent_type, source, start_time, duration,
                 project_path, tab_id, is_remote)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                event.session_id,
                event.agent_type,
                event.source,
                event.start_time,
                event.duration,
                event.project_path,
                event.tab_id,
                int(event.is_remote),
            ),
        )
        return event_id

    def list_events(
        self, time_range: StatsTimeRange, filters: StatsFilters | None = None
    ) -> list[QueryEvent]:
        clauses = ["start_time >= ?"]
        params: list[Any] = [range_start(time_range, self._clock())]
        if filters is not None:
            for column in ("agent_type", "source", "project_path", "session_id"):
                value = getattr(filters, column)
                if value is not None:
                    clauses.append(f"{column} = ?")
                    params.append(value)

        rows = self._conn.execute(
            f"SELECT * FROM query_events WHERE {' AND '.join(clauses)} ORDER BY start_time DESC",
            params,
        ).fetchall()
        return [
            QueryEvent(
                id=row["id"],
                session_id=row["session_id"],
                agent_type=row["agent_type"],
                source=row["source"],
                start_time=row["start_time"],
                duration=row["duration"],
                project_path=row["project_path"],
                tab_id=row["tab_id"],
                is_remote=bool(row["is_remote"]),
            )
            for row in rows
        ]


class AutoRunRepository:
    """Auto-run sessions and their tasks."""

    _UPDATABLE = frozenset({"duration", "tasks_total", "tasks_completed", "document_path"})

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], int]):
        self._conn = conn
        self._clock = clock

    def insert_session(self, session: AutoRunSession) -> str:
        session_id = session.id or _new_id()
        self._conn.execute(
            """
            INSERT INTO auto_run_sessions
                (id, session_id, agent_type, document_path, start_time, duration,
                 tasks_total, tasks_completed, project_path)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                session.session_id,
                session.agent_type,
                session.document_path,
                session.start_time,
                session.duration,
                session.tasks_total,
                session.tasks_completed,
                session.project_path,
            ),
        )
        return session_id

    def update_session(self, auto_run_id: str, **fields: Any) -> bool:
        """Update mutable columns of an auto-run session.

        Raises:
            ValueError: If a field is not updatable
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update auto-run fields: {sorted(unknown)}")
        if not fields:
            return False

        assignments = ", ".join(f"{name} = ?" for name in fields)
        cursor = self._conn.execute(
            f"UPDATE auto_run_sessions SET {assignments} WHERE id = ?",
            [*fields.values(), auto_run_id],
        )
        return cursor.rowcount > 0

    def list_sessions(self, time_range: StatsTimeRange) -> list[AutoRunSession]:
        rows = self._conn.execute(
            "SELECT * FROM auto_run_sessions WHERE start_time >= ? ORDER BY start_time DESC",
            (range_start(time_range, self._clock()),),
        ).fetchall()
        return [
            AutoRunSession(
                id=row["id"],
                session_id=row["session_id"],
                agent_type=row["agent_type"],
                document_path=row["document_path"],
                start_time=row["start_time"],
                duration=row["duration"],
                tasks_total=row["tasks_total"],
                tasks_completed=row["tasks_completed"],
                project_path=row["project_path"],
            )
            for row in rows
        ]

    def insert_task(self, task: AutoRunTask) -> str:
        task_id = task.id or _new_id()
        self._conn.execute(
            """
            INSERT INTO auto_run_tasks
                (id, auto_run_session_id, session_id, agent_type, task_index,
                 task_content, start_time, duration, success)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                task.auto_run_session_id,
                task.session_id,
                task.agent_type,
                task.task_index,
                task.task_content,
                task.start_time,
                task.duration,
                int(task.success),
            ),
        )
        return task_id

    def list_tasks(self, auto_run_session_id: str) -> list[AutoRunTask]:
        rows = self._conn.execute(
            "SELECT * FROM auto_run_tasks WHERE auto_run_session_id = ? ORDER BY task_index ASC",
            (auto_run_session_id,),
        ).fetchall()
        return [
            AutoRunTask(
                id=row["id"],
                auto_run_session_id=row["auto_run_session_id"],
                session_id=row["session_id"],
                agent_type=row["agent_type"],
                task_index=row["task_index"],
                task_content=row["task_content"],
                start_time=row["start_time"],
                duration=row["duration"],
                success=bool(row["success"]),
            )
            for row in rows
        ]


class SessionLifecycleRepository:
    """Agent session creation and closing times."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], int]):
        self._conn = conn
        self._clock = clock

    def record_created(self, event: SessionLifecycleEvent) -> str:
        event_id = event.id or _new_id()
        self._conn.execute(
            """
            INSERT INTO session_lifecycle
                (id, session_id, agent_type, project_path, created_at, is_remote)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                event.session_id,
                event.agent_type,
                event.project_path,
                event.created_at,
                int(event.is_remote),
            ),
        )
        return event_id

    def record_closed(self, session_id: str, closed_at: int) -> bool:
        """Mark a session closed; False if it was never recorded."""
        cursor = self._conn.execute(
            "UPDATE session_lifecycle SET closed_at = ?, duration = ? - created_at "
            "WHERE session_id = ?",
            (closed_at, closed_at, session_id),
        )
        return cursor.rowcount > 0

    def list_events(self, time_range: StatsTimeRange) -> list[SessionLifecycleEvent]:
        rows = self._conn.execute(
            "SELECT * FROM session_lifecycle WHERE created_at >= ? ORDER BY created_at DESC",
            (range_start(time_range, self._clock()),),
        ).fetchall()
        return [
            SessionLifecycleEvent(
                id=row["id"],
                session_id=row["session_id"],
                agent_type=row["agent_type"],
                project_path=row["project_path"],
                created_at=row["created_at"],
                closed_at=row["closed_at"],
                duration=row["duration"],
                is_remote=bool(row["is_remote"]),
            )
            for row in rows
        ]
