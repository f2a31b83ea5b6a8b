"""Tests for telemetry records, aggregations and data management.

Runs against an initialized StatsDB with a fixed clock so that time
ranges are deterministic.
"""

import csv
import io

import pytest
from conftest import FakeClock

from statsvault.constants import DAY_MS
from statsvault.storage.stats_db import StatsDB
from statsvault.storage.telemetry import range_start
from statsvault.storage.types import (
    AutoRunSession,
    AutoRunTask,
    QueryEvent,
    SessionLifecycleEvent,
    StatsFilters,
)


def _query(
    clock: FakeClock,
    *,
    days_ago: float = 0,
    agent: str = "claude-code",
    source: str = "user",
    duration: int = 1000,
    session: str = "s1",
    project: str | None = "/work/app",
) -> QueryEvent:
    return QueryEvent(
        session_id=session,
        agent_type=agent,
        source=source,
        start_time=clock() - int(days_ago * DAY_MS),
        duration=duration,
        project_path=project,
    )


# ============================================================================
# Time ranges
# ============================================================================


class TestRangeStart:
    """Test the time range lower bounds."""

    @pytest.mark.parametrize(
        ("time_range", "days"),
        [("day", 1), ("week", 7), ("month", 30), ("year", 365)],
    )
    def test_named_ranges(self, time_range: str, days: int) -> None:
        assert range_start(time_range, 10**13) == 10**13 - days * DAY_MS

    def test_all_starts_at_zero(self) -> None:
        assert range_start("all", 10**13) == 0

    def test_unknown_range(self) -> None:
        with pytest.raises(ValueError, match="Unknown time range"):
            range_start("fortnight", 10**13)


# ============================================================================
# Query events
# ============================================================================


class TestQueryEvents:
    """Test query event insert and lookup."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, stats_db: StatsDB, clock: FakeClock) -> None:
        event_id = stats_db.insert_query_event(_query(clock))

        events = stats_db.get_query_events("day")

        assert len(events) == 1
        assert events[0].id == event_id
        assert events[0].is_remote is False

    @pytest.mark.asyncio
    async def test_range_excludes_older_events(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.insert_query_event(_query(clock, days_ago=0.5))
        stats_db.insert_query_event(_query(clock, days_ago=3))
        stats_db.insert_query_event(_query(clock, days_ago=100))

        assert len(stats_db.get_query_events("day")) == 1
        assert len(stats_db.get_query_events("week")) == 2
        assert len(stats_db.get_query_events("year")) == 3

    @pytest.mark.asyncio
    async def test_newest_first(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.insert_query_event(_query(clock, days_ago=2, session="old"))
        stats_db.insert_query_event(_query(clock, days_ago=1, session="new"))

        assert [e.session_id for e in stats_db.get_query_events("week")] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_filters(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.insert_query_event(_query(clock, agent="claude-code", source="user"))
        stats_db.insert_query_event(_query(clock, agent="codex", source="auto"))
        stats_db.insert_query_event(_query(clock, agent="codex", source="user", project=None))

        codex = stats_db.get_query_events("all", StatsFilters(agent_type="codex"))
        codex_user = stats_db.get_query_events(
            "all", StatsFilters(agent_type="codex", source="user")
        )
        in_project = stats_db.get_query_events("all", StatsFilters(project_path="/work/app"))

        assert len(codex) == 2
        assert len(codex_user) == 1
        assert len(in_project) == 2

    @pytest.mark.asyncio
    async def test_remote_flag_roundtrip(self, stats_db: StatsDB, clock: FakeClock) -> None:
        event = _query(clock)
        event.is_remote = True
        event.tab_id = "tab-7"
        stats_db.insert_query_event(event)

        stored = stats_db.get_query_events("all")[0]

        assert stored.is_remote is True
        assert stored.tab_id == "tab-7"


# ============================================================================
# Auto-run sessions and tasks
# ============================================================================


class TestAutoRuns:
    """Test auto-run session and task storage."""

    @pytest.mark.asyncio
    async def test_session_update(self, stats_db: StatsDB, clock: FakeClock) -> None:
        run_id = stats_db.insert_auto_run_session(
            AutoRunSession(
                session_id="s1",
                agent_type="claude-code",
                start_time=clock(),
                document_path="TODO.md",
                tasks_total=3,
            )
        )

        assert stats_db.update_auto_run_session(run_id, duration=9000, tasks_completed=3)

        [session] = stats_db.get_auto_run_sessions("day")
        assert session.id == run_id
        assert session.duration == 9000
        assert session.tasks_completed == 3
        assert session.document_path == "TODO.md"

    @pytest.mark.asyncio
    async def test_update_unknown_session(self, stats_db: StatsDB) -> None:
        assert stats_db.update_auto_run_session("missing", duration=1) is False

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, stats_db: StatsDB) -> None:
        with pytest.raises(ValueError, match="Cannot update auto-run fields"):
            stats_db.update_auto_run_session("x", agent_type="other")

    @pytest.mark.asyncio
    async def test_tasks_ordered_by_index(self, stats_db: StatsDB, clock: FakeClock) -> None:
        run_id = stats_db.insert_auto_run_session(
            AutoRunSession(session_id="s1", agent_type="claude-code", start_time=clock())
        )
        for index, ok in ((2, False), (0, True), (1, True)):
            stats_db.insert_auto_run_task(
                AutoRunTask(
                    auto_run_session_id=run_id,
                    session_id="s1",
                    agent_type="claude-code",
                    task_index=index,
                    start_time=clock() + index,
                    duration=100,
                    success=ok,
                    task_content=f"task {index}",
                )
            )

        tasks = stats_db.get_auto_run_tasks(run_id)

        assert [t.task_index for t in tasks] == [0, 1, 2]
        assert [t.success for t in tasks] == [True, True, False]
        assert stats_db.get_auto_run_tasks("other") == []


# ============================================================================
# Session lifecycle
# ============================================================================


class TestSessionLifecycle:
    """Test session creation/close tracking."""

    @pytest.mark.asyncio
    async def test_close_computes_duration(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.record_session_created(
            SessionLifecycleEvent(session_id="s1", agent_type="claude-code", created_at=clock())
        )

        assert stats_db.record_session_closed("s1", clock() + 60_000)

        [event] = stats_db.get_session_lifecycle_events("day")
        assert event.closed_at == clock() + 60_000
        assert event.duration == 60_000

    @pytest.mark.asyncio
    async def test_close_unknown_session(self, stats_db: StatsDB, clock: FakeClock) -> None:
        assert stats_db.record_session_closed("ghost", clock()) is False

    @pytest.mark.asyncio
    async def test_open_session_has_no_duration(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.record_session_created(
            SessionLifecycleEvent(
                session_id="s1", agent_type="codex", created_at=clock(), is_remote=True
            )
        )

        [event] = stats_db.get_session_lifecycle_events("all")

        assert event.closed_at is None
        assert event.duration is None
        assert event.is_remote is True


# ============================================================================
# Aggregation and export
# ============================================================================


class TestReports:
    """Test aggregated statistics, CSV export and pruning."""

    @pytest.mark.asyncio
    async def test_aggregated_stats(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.insert_query_event(_query(clock, agent="claude-code", duration=1000))
        stats_db.insert_query_event(_query(clock, agent="claude-code", duration=3000, source="auto"))
        stats_db.insert_query_event(_query(clock, agent="codex", duration=2000, days_ago=2))
        stats_db.insert_query_event(_query(clock, agent="codex", duration=5000, days_ago=60))

        stats = stats_db.get_aggregated_stats("week")

        assert stats.total_queries == 3
        assert stats.total_duration == 6000
        assert stats.avg_duration == 2000
        assert stats.by_agent == {
            "claude-code": {"count": 2, "duration": 4000},
            "codex": {"count": 1, "duration": 2000},
        }
        assert stats.by_source == {"user": 2, "auto": 1}
        assert [d["count"] for d in stats.by_day] == [1, 2]
        assert stats.by_day[-1]["date"] == "2026-03-15"

    @pytest.mark.asyncio
    async def test_aggregated_stats_empty(self, stats_db: StatsDB) -> None:
        stats = stats_db.get_aggregated_stats("all")

        assert stats.total_queries == 0
        assert stats.avg_duration == 0.0
        assert stats.by_source == {"user": 0, "auto": 0}
        assert stats.by_day == []

    @pytest.mark.asyncio
    async def test_export_csv(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.insert_query_event(_query(clock, session="a", project=None))
        stats_db.insert_query_event(_query(clock, session="b", days_ago=1))

        rows = list(csv.DictReader(io.StringIO(stats_db.export_to_csv("week"))))

        assert [r["session_id"] for r in rows] == ["b", "a"]
        assert rows[1]["project_path"] == ""
        assert rows[0]["is_remote"] == "0"

    @pytest.mark.asyncio
    async def test_export_csv_header_only(self, stats_db: StatsDB) -> None:
        assert stats_db.export_to_csv("day").splitlines() == [
            "id,session_id,agent_type,source,start_time,duration,project_path,tab_id,is_remote"
        ]

    @pytest.mark.asyncio
    async def test_earliest_timestamp(self, stats_db: StatsDB, clock: FakeClock) -> None:
        assert stats_db.get_earliest_timestamp() is None

        stats_db.insert_query_event(_query(clock, days_ago=2))
        stats_db.record_session_created(
            SessionLifecycleEvent(
                session_id="s9", agent_type="codex", created_at=clock() - 5 * DAY_MS
            )
        )

        assert stats_db.get_earliest_timestamp() == clock() - 5 * DAY_MS

    @pytest.mark.asyncio
    async def test_clear_old_data(self, stats_db: StatsDB, clock: FakeClock) -> None:
        stats_db.insert_query_event(_query(clock, days_ago=1))
        stats_db.insert_query_event(_query(clock, days_ago=40))
        old_run = stats_db.insert_auto_run_session(
            AutoRunSession(session_id="s1", agent_type="codex", start_time=clock() - 40 * DAY_MS)
        )
        stats_db.insert_auto_run_task(
            AutoRunTask(
                auto_run_session_id=old_run,
                session_id="s1",
                agent_type="codex",
                task_index=0,
                start_time=clock() - 40 * DAY_MS,
                duration=10,
                success=True,
            )
        )
        stats_db.record_session_created(
            SessionLifecycleEvent(
                session_id="old", agent_type="codex", created_at=clock() - 40 * DAY_MS
            )
        )

        result = stats_db.clear_old_data(30)

        assert result.success
        assert result.deleted_query_events == 1
        assert result.deleted_auto_run_sessions == 1
        assert result.deleted_auto_run_tasks == 1
        assert result.deleted_session_lifecycle == 1
        assert len(stats_db.get_query_events("all")) == 1
        assert stats_db.get_auto_run_tasks(old_run) == []

    @pytest.mark.asyncio
    async def test_clear_old_data_rejects_non_positive(self, stats_db: StatsDB) -> None:
        result = stats_db.clear_old_data(0)
        assert not result.success
        assert result.error
