"""Aggregations, CSV export and pruning over the telemetry tables."""

import csv
import io
import logging
import sqlite3
from collections.abc import Callable

from statsvault.constants import DAY_MS
from statsvault.storage.telemetry import range_start
from statsvault.storage.types import ClearOldDataResult, StatsAggregation, StatsTimeRange

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "session_id",
    "agent_type",
    "source",
    "start_time",
    "duration",
    "project_path",
    "tab_id",
    "is_remote",
)


class StatsReports:
    """Read-mostly reporting queries bound to one connection.

    Args:
        conn: Live database handle
        clock: Returns the current time in unix milliseconds
    """

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], int]):
        self._conn = conn
        self._clock = clock

    def aggregate(self, time_range: StatsTimeRange) -> StatsAggregation:
        """Summarize query events in a time range."""
        start = range_start(time_range, self._clock())

        totals = self._conn.execute(
            "SELECT COUNT(*) AS count, COALESCE(SUM(duration), 0) AS duration "
            "FROM query_events WHERE start_time >= ?",
            (start,),
        ).fetchone()
        total_queries = int(totals["count"])
        total_duration = int(totals["duration"])

        stats = StatsAggregation(
            total_queries=total_queries,
            total_duration=total_duration,
            avg_duration=total_duration / total_queries if total_queries else 0.0,
        )

        for row in self._conn.execute(
            "SELECT agent_type, COUNT(*) AS count, SUM(duration) AS duration "
            "FROM query_events WHERE start_time >= ? GROUP BY agent_type",
            (start,),
        ):
            stats.by_agent[row["agent_type"]] = {
                "count": int(row["count"]),
                "duration": int(row["duration"]),
            }

        for row in self._conn.execute(
            "SELECT source, COUNT(*) AS count FROM query_events "
            "WHERE start_time >= ? GROUP BY source",
            (start,),
        ):
            stats.by_source[row["source"]] = int(row["count"])

        stats.by_day = [
            {"date": row["day"], "count": int(row["count"]), "duration": int(row["duration"])}
            for row in self._conn.execute(
                "SELECT date(start_time / 1000, 'unixepoch') AS day, COUNT(*) AS count, "
                "SUM(duration) AS duration FROM query_events WHERE start_time >= ? "
                "GROUP BY day ORDER BY day ASC",
                (start,),
            )
        ]
        return stats

    def export_csv(self, time_range: StatsTimeRange) -> str:
        """Render query events in a time range as CSV, oldest first."""
        rows = self._conn.execute(
            f"SELECT {', '.join(CSV_COLUMNS)} FROM query_events "
            "WHERE start_time >= ? ORDER BY start_time ASC",
            (range_start(time_range, self._clock()),),
        ).fetchall()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for row in rows:
            writer.writerow(["" if value is None else value for value in row])
        return buffer.getvalue()

    def earliest_timestamp(self) -> int | None:
        """Oldest recorded time across all telemetry tables, None if empty."""
        candidates = []
        for query in (
            "SELECT MIN(start_time) FROM query_events",
            "SELECT MIN(start_time) FROM auto_run_sessions",
            "SELECT MIN(created_at) FROM session_lifecycle",
        ):
            value = self._conn.execute(query).fetchone()[0]
            if value is not None:
                candidates.append(int(value))
        return min(candidates) if candidates else None

    def clear_old_data(self, older_than_days: int) -> ClearOldDataResult:
        """Delete telemetry rows older than the given number of days.

        Runs in a single transaction. Never raises.
        """
        if older_than_days <= 0:
            return ClearOldDataResult(success=False, error="older_than_days must be positive")

        cutoff = self._clock() - older_than_days * DAY_MS
        try:
            self._conn.execute("BEGIN")
            tasks = self._conn.execute(
                "DELETE FROM auto_run_tasks WHERE start_time < ? OR auto_run_session_id IN "
                "(SELECT id FROM auto_run_sessions WHERE start_time < ?)",
                (cutoff, cutoff),
            ).rowcount
            sessions = self._conn.execute(
                "DELETE FROM auto_run_sessions WHERE start_time < ?", (cutoff,)
            ).rowcount
            queries = self._conn.execute(
                "DELETE FROM query_events WHERE start_time < ?", (cutoff,)
            ).rowcount
            lifecycle = self._conn.execute(
                "DELETE FROM session_lifecycle WHERE created_at < ?", (cutoff,)
            ).rowcount
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            logger.error(f"Failed to clear old stats data: {e}")
            return ClearOldDataResult(success=False, error=str(e))

        logger.info(
            f"Cleared stats older than {older_than_days} days: {queries} query events, "
            f"{sessions} auto-run sessions, {tasks} tasks, {lifecycle} lifecycle events"
        )
        return ClearOldDataResult(
            success=True,
            deleted_query_events=queries,
            deleted_auto_run_sessions=sessions,
            deleted_auto_run_tasks=tasks,
            deleted_session_lifecycle=lifecycle,
        )
