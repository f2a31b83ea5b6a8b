"""Pytest configuration and shared fixtures for statsvault tests.

This module provides reusable fixtures for testing:
- temp_dir: Temporary directory for database files
- clock: Controllable millisecond clock (no sleeping in tests)
- settings / db_path: Settings pointing at temp_dir
- stats_db: Initialized StatsDB, closed after the test
- env_setup: (autouse) Isolates STATSVAULT_* environment variables

Helpers:
- make_sqlite_file: Write a small standalone SQLite file with N marker rows
- count_rows: Count rows of a table in a file opened read-only

Usage:
    async def test_something(stats_db, clock):
        clock.advance(DAY_MS)
"""

import contextlib
import os
import sqlite3
import tempfile
from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from statsvault.config import StatsSettings
from statsvault.storage.stats_db import StatsDB

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]

# 2026-03-15 12:00:00 UTC
BASE_TIME_MS = int(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = BASE_TIME_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def env_setup(tmp_path: Path) -> Generator[None, None, None]:
    """Keep tests independent of the caller's STATSVAULT_* environment.

    Any STATSVAULT_* variable is removed, and the default data directory is
    pointed at a throwaway path so nothing is written under $HOME.
    """
    original = {k: v for k, v in os.environ.items() if k.startswith("STATSVAULT_")}
    for key in original:
        del os.environ[key]
    os.environ["STATSVAULT_DATA_DIR"] = str(tmp_path / "default-data")
    yield
    for key in [k for k in os.environ if k.startswith("STATSVAULT_")]:
        del os.environ[key]
    os.environ.update(original)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test file operations.

    Yields:
        Path: Path to the temporary directory (cleaned up after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(temp_dir: Path) -> StatsSettings:
    return StatsSettings(data_dir=temp_dir)


@pytest.fixture
def db_path(settings: StatsSettings) -> Path:
    return settings.get_db_path()


@pytest_asyncio.fixture
async def stats_db(
    db_path: Path, settings: StatsSettings, clock: FakeClock
) -> AsyncGenerator[StatsDB, None]:
    """Provide an initialized StatsDB on a fresh file.

    Yields:
        StatsDB: Ready database, closed after the test
    """
    db = StatsDB(db_path, settings=settings, clock=clock)
    await db.initialize()
    yield db
    db.close()


def make_sqlite_file(path: Path, rows: int) -> Path:
    """Write a standalone (rollback-journal) SQLite file with a marker table."""
    with contextlib.closing(sqlite3.connect(path)) as conn:
        conn.execute("CREATE TABLE marker (n INTEGER)")
        conn.executemany("INSERT INTO marker (n) VALUES (?)", [(i,) for i in range(rows)])
        conn.commit()
    return path


def count_rows(path: Path, table: str) -> int:
    uri = f"{path.resolve().as_uri()}?mode=ro"
    with contextlib.closing(sqlite3.connect(uri, uri=True)) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
