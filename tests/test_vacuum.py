"""Tests for VacuumScheduler gating."""

import sqlite3
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from conftest import FakeClock

from statsvault.constants import DAY_MS, META_LAST_VACUUM_AT
from statsvault.storage.connection import open_connection
from statsvault.storage.meta import MetaStore
from statsvault.storage.stats_db import StatsDB
from statsvault.storage.types import QueryEvent, VacuumResult
from statsvault.storage.vacuum import VacuumScheduler, file_size

WEEK_MS = 7 * DAY_MS


@pytest.fixture
def conn(db_path: Path) -> sqlite3.Connection:
    c = open_connection(db_path)
    MetaStore(c).ensure_schema()
    c.execute("CREATE TABLE blob_rows (data BLOB)")
    yield c
    c.close()


@pytest.fixture
def scheduler(db_path: Path, conn: sqlite3.Connection, clock: FakeClock) -> VacuumScheduler:
    return VacuumScheduler(db_path, lambda: conn, clock)


@pytest.fixture
def vacuum_spy(scheduler: VacuumScheduler, monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    spy = AsyncMock(return_value=VacuumResult(success=True, bytes_freed=0))
    monkeypatch.setattr(scheduler, "vacuum", spy)
    return spy


# ============================================================================
# Weekly gate
# ============================================================================


class TestWeeklyGate:
    """Test the time gate backed by the _meta table."""

    @pytest.mark.asyncio
    async def test_recent_vacuum_skips_regardless_of_size(
        self,
        scheduler: VacuumScheduler,
        conn: sqlite3.Connection,
        clock: FakeClock,
        vacuum_spy: AsyncMock,
    ) -> None:
        MetaStore(conn).set(META_LAST_VACUUM_AT, clock() - DAY_MS)

        result = await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=0)

        assert result is None
        vacuum_spy.assert_not_called()

    @pytest.mark.asyncio
    async def test_runs_when_both_gates_pass(
        self,
        scheduler: VacuumScheduler,
        conn: sqlite3.Connection,
        clock: FakeClock,
        vacuum_spy: AsyncMock,
    ) -> None:
        MetaStore(conn).set(META_LAST_VACUUM_AT, clock() - 8 * DAY_MS)

        result = await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=0)

        assert result is not None
        assert result.vacuumed
        vacuum_spy.assert_awaited_once()
        assert MetaStore(conn).get_int(META_LAST_VACUUM_AT) == clock()

    @pytest.mark.asyncio
    async def test_size_gate_blocks_small_database(
        self,
        scheduler: VacuumScheduler,
        conn: sqlite3.Connection,
        vacuum_spy: AsyncMock,
    ) -> None:
        """Never vacuumed, but below the threshold: nothing runs, timestamp unchanged."""
        result = await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=1 << 40)

        assert result is not None
        assert not result.vacuumed
        vacuum_spy.assert_not_called()
        assert MetaStore(conn).get(META_LAST_VACUUM_AT) is None

    @pytest.mark.asyncio
    async def test_virtual_time_reopens_gate(
        self,
        scheduler: VacuumScheduler,
        clock: FakeClock,
        vacuum_spy: AsyncMock,
    ) -> None:
        await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=0)
        clock.advance(3 * DAY_MS)
        await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=0)
        clock.advance(5 * DAY_MS)
        await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=0)

        assert vacuum_spy.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_timestamp_treated_as_never(
        self,
        scheduler: VacuumScheduler,
        conn: sqlite3.Connection,
        vacuum_spy: AsyncMock,
    ) -> None:
        MetaStore(conn).set(META_LAST_VACUUM_AT, "yesterday-ish")

        await scheduler.vacuum_if_needed_weekly(WEEK_MS, threshold_bytes=0)

        vacuum_spy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_connection_returns_none(self, db_path: Path, clock: FakeClock) -> None:
        scheduler = VacuumScheduler(db_path, lambda: None, clock)
        assert await scheduler.vacuum_if_needed_weekly() is None


# ============================================================================
# VACUUM execution
# ============================================================================


class TestVacuum:
    """Test the VACUUM run itself on a real file."""

    @pytest.mark.asyncio
    async def test_vacuum_reclaims_space(
        self, scheduler: VacuumScheduler, conn: sqlite3.Connection, db_path: Path
    ) -> None:
        conn.executemany(
            "INSERT INTO blob_rows (data) VALUES (?)", [(b"x" * 4096,) for _ in range(200)]
        )
        conn.execute("DELETE FROM blob_rows")

        result = await scheduler.vacuum()

        assert result.success
        assert result.error is None
        assert result.bytes_freed > 0

    @pytest.mark.asyncio
    async def test_wal_mode_vacuum_reports_freed_bytes(
        self, stats_db: StatsDB, db_path: Path, clock: FakeClock
    ) -> None:
        """Rebuilt pages are checkpointed out of the -wal file before measuring."""
        for i in range(300):
            stats_db.insert_query_event(
                QueryEvent(f"s{i}", "claude-code", "user", clock(), 1000, project_path="p" * 4096)
            )
        stats_db.database.execute("DELETE FROM query_events")
        stats_db.database.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchall()
        size_before = db_path.stat().st_size

        result = await stats_db.vacuum()

        assert result.success
        assert result.bytes_freed > 0
        assert db_path.stat().st_size == size_before - result.bytes_freed

    @pytest.mark.asyncio
    async def test_vacuum_if_needed_runs_at_threshold(
        self, scheduler: VacuumScheduler, db_path: Path
    ) -> None:
        size = await file_size(db_path)

        check = await scheduler.vacuum_if_needed(threshold_bytes=size)

        assert check.vacuumed
        assert check.database_size == size
        assert check.result.success

    @pytest.mark.asyncio
    async def test_vacuum_error_is_reported(self, db_path: Path, clock: FakeClock) -> None:
        conn = open_connection(db_path)
        conn.close()
        scheduler = VacuumScheduler(db_path, lambda: conn, clock)

        result = await scheduler.vacuum()

        assert not result.success
        assert result.error

    @pytest.mark.asyncio
    async def test_file_size_missing(self, temp_dir: Path) -> None:
        assert await file_size(temp_dir / "missing.db") == 0
