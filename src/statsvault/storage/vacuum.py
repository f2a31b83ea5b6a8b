"""VACUUM scheduling for the stats database.

Two gates guard the scheduled run: at least interval_ms since the last
VACUUM (recorded in the _meta table) AND a file size at or above the
threshold. Small databases are therefore never vacuumed, and large ones at
most once per interval.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path

from statsvault.constants import (
    DAY_MS,
    DEFAULT_VACUUM_INTERVAL_MS,
    DEFAULT_VACUUM_THRESHOLD_BYTES,
    META_LAST_VACUUM_AT,
)
from statsvault.storage.backup import now_ms
from statsvault.storage.meta import MetaStore
from statsvault.storage.types import VacuumCheckResult, VacuumResult

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


async def file_size(path: Path) -> int:
    """Size of a file in bytes, 0 if it does not exist."""
    try:
        stat = await asyncio.to_thread(path.stat)
    except OSError:
        return 0
    return stat.st_size


class VacuumScheduler:
    """Runs VACUUM on demand, by size, or on a weekly schedule.

    Args:
        db_path: Database file path (for size measurement)
        connection: Returns the live handle, or None when closed
        clock: Returns the current time in unix milliseconds
    """

    def __init__(
        self,
        db_path: Path,
        connection: Callable[[], sqlite3.Connection | None],
        clock: Callable[[], int] = now_ms,
    ):
        self.db_path = db_path
        self._connection = connection
        self._clock = clock

    async def vacuum(self) -> VacuumResult:
        """Run VACUUM unconditionally. Never raises."""
        conn = self._connection()
        if conn is None:
            return VacuumResult(success=False, error="Database not initialized")

        try:
            # Sizes are only comparable once the WAL is folded into the main file
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchall()
            size_before = await file_size(self.db_path)
            logger.info(f"Starting VACUUM (current size: {size_before / _MB:.2f} MB)")

            conn.execute("VACUUM")
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchall()

            size_after = await file_size(self.db_path)
            bytes_freed = size_before - size_after
            logger.info(
                f"VACUUM completed: {size_before / _MB:.2f} MB -> {size_after / _MB:.2f} MB "
                f"(freed {bytes_freed / _MB:.2f} MB)"
            )
            return VacuumResult(success=True, bytes_freed=bytes_freed)
        except sqlite3.Error as e:
            logger.error(f"VACUUM failed: {e}")
            return VacuumResult(success=False, error=str(e))

    async def vacuum_if_needed(
        self, threshold_bytes: int = DEFAULT_VACUUM_THRESHOLD_BYTES
    ) -> VacuumCheckResult:
        """Run VACUUM only when the file is at least threshold_bytes large."""
        database_size = await file_size(self.db_path)

        if database_size < threshold_bytes:
            logger.debug(
                f"Database size ({database_size / _MB:.2f} MB) below vacuum threshold "
                f"({threshold_bytes / _MB:.2f} MB), skipping VACUUM"
            )
            return VacuumCheckResult(vacuumed=False, database_size=database_size)

        logger.info(
            f"Database size ({database_size / _MB:.2f} MB) exceeds vacuum threshold "
            f"({threshold_bytes / _MB:.2f} MB), running VACUUM"
        )
        result = await self.vacuum()
        return VacuumCheckResult(vacuumed=True, database_size=database_size, result=result)

    async def vacuum_if_needed_weekly(
        self,
        interval_ms: int = DEFAULT_VACUUM_INTERVAL_MS,
        threshold_bytes: int = DEFAULT_VACUUM_THRESHOLD_BYTES,
    ) -> VacuumCheckResult | None:
        """Run the size-gated VACUUM at most once per interval.

        Failures are logged and swallowed.

        Returns:
            The size check result, or None when skipped by the time gate or on error
        """
        try:
            conn = self._connection()
            if conn is None:
                logger.warning("Skipping scheduled VACUUM: database not initialized")
                return None
            meta = MetaStore(conn)

            last_vacuum = meta.get_int(META_LAST_VACUUM_AT, 0)
            now = self._clock()
            elapsed = now - last_vacuum

            if elapsed < interval_ms:
                logger.debug(
                    f"Skipping VACUUM (last run {elapsed / DAY_MS:.1f} days ago, "
                    f"next in {(interval_ms - elapsed) / DAY_MS:.1f} days)"
                )
                return None

            result = await self.vacuum_if_needed(threshold_bytes)

            if result.vacuumed:
                meta.set(META_LAST_VACUUM_AT, now)
                logger.info("Updated VACUUM timestamp in _meta table")
            return result
        except sqlite3.Error as e:
            logger.warning(f"Failed to check/update VACUUM schedule: {e}")
            return None
