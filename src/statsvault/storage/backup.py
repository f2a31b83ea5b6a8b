"""Backup creation, rotation, listing and restore for the stats database.

Backup artifacts sit next to the database file:
- stats.db.daily.YYYY-MM-DD: one per UTC day, rotated after the retention window
- stats.db.backup.<unix-ms>: ad-hoc backups, never rotated

Every copy is preceded by PRAGMA wal_checkpoint(TRUNCATE) so that the backup
is self-contained: committed pages still sitting in the -wal file would
otherwise be missing from a plain file copy.
"""

import asyncio
import logging
import re
import shutil
import sqlite3
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from statsvault.constants import DAILY_BACKUP_INFIX, DAY_MS, LEGACY_BACKUP_INFIX
from statsvault.storage.connection import sidecar_paths
from statsvault.storage.types import BackupInfo, BackupResult

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def date_key(timestamp_ms: int) -> str:
    """UTC calendar date (YYYY-MM-DD) of a unix-ms timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()


class BackupManager:
    """Creates, rotates, lists and restores backups of one database file.

    Args:
        db_path: Path of the live database file
        connection: Returns the live handle, or None when closed; used to
            checkpoint the WAL before copying
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
        name = re.escape(db_path.name)
        self._daily_re = re.compile(rf"^{name}\.{DAILY_BACKUP_INFIX}\.(\d{{4}}-\d{{2}}-\d{{2}})$")
        self._legacy_re = re.compile(rf"^{name}\.{LEGACY_BACKUP_INFIX}\.(\d+)$")

    def daily_backup_path(self, day: str) -> Path:
        return self.db_path.with_name(f"{self.db_path.name}.{DAILY_BACKUP_INFIX}.{day}")

    # =========================================================================
    # Creation
    # =========================================================================

    def _checkpoint(self) -> None:
        conn = self._connection()
        if conn is not None:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchall()

    def create_consistent_copy(self, dest_path: Path) -> None:
        """Checkpoint the WAL into the main file, then copy it to dest_path.

        Raises:
            OSError: If the copy fails
            sqlite3.Error: If the checkpoint fails
        """
        self._checkpoint()
        shutil.copyfile(self.db_path, dest_path)

    def backup_now(self) -> BackupResult:
        """Create an ad-hoc stats.db.backup.<ms> copy. Never raises."""
        try:
            if not self.db_path.exists():
                return BackupResult(success=False, error="Database file does not exist")

            backup_path = self.db_path.with_name(
                f"{self.db_path.name}.{LEGACY_BACKUP_INFIX}.{self._clock()}"
            )
            self.create_consistent_copy(backup_path)
            logger.info(f"Created database backup at {backup_path}")
            return BackupResult(success=True, backup_path=backup_path)
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to create database backup: {e}")
            return BackupResult(success=False, error=str(e))

    async def ensure_daily_backup(self, retention_days: int) -> Path | None:
        """Create today's daily backup if missing, then rotate old ones.

        Failures are logged and swallowed.

        Returns:
            Path of the backup created by this call, or None
        """
        try:
            if not await asyncio.to_thread(self.db_path.exists):
                return None

            today = date_key(self._clock())
            daily_path = self.daily_backup_path(today)
            if await asyncio.to_thread(daily_path.exists):
                logger.debug(f"Daily backup already exists for {today}")
                return None

            self._checkpoint()
            await asyncio.to_thread(shutil.copyfile, self.db_path, daily_path)
            logger.info(f"Created daily backup: {daily_path}")
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"Failed to create daily backup: {e}")
            return None

        await self.rotate_old_backups(retention_days)
        return daily_path

    # =========================================================================
    # Rotation and listing
    # =========================================================================

    async def rotate_old_backups(self, retention_days: int) -> int:
        """Delete daily backups dated strictly before today - retention_days.

        Legacy backups are never touched, and the newest daily backup is kept
        whatever its age.

        Returns:
            Number of backups removed
        """
        cutoff = date_key(self._clock() - retention_days * DAY_MS)
        try:
            names = await asyncio.to_thread(lambda: [p.name for p in self.db_path.parent.iterdir()])
        except OSError as e:
            logger.warning(f"Failed to rotate old backups: {e}")
            return 0

        dated = sorted(
            (match.group(1), name)
            for name in names
            if (match := self._daily_re.match(name))
        )
        if not dated:
            return 0
        newest_date = dated[-1][0]

        removed = 0
        for day, name in dated:
            # YYYY-MM-DD keys order lexicographically
            if day >= cutoff or day == newest_date:
                continue
            try:
                await asyncio.to_thread((self.db_path.parent / name).unlink)
                removed += 1
                logger.debug(f"Removed old daily backup: {name}")
            except OSError as e:
                logger.warning(f"Failed to remove old backup {name}: {e}")

        if removed:
            logger.info(f"Rotated {removed} old daily backup(s)")
        return removed

    def list_backups(self) -> list[BackupInfo]:
        """List daily and legacy backups, newest date key first.

        Ordering uses the date in the file name, never the file mtime.
        """
        backups: list[BackupInfo] = []
        try:
            for entry in self.db_path.parent.iterdir():
                if match := self._daily_re.match(entry.name):
                    day = match.group(1)
                elif match := self._legacy_re.match(entry.name):
                    try:
                        day = date_key(int(match.group(1)))
                    except (ValueError, OverflowError, OSError):
                        logger.debug(f"Ignoring backup with out-of-range timestamp: {entry.name}")
                        continue
                else:
                    continue
                backups.append(BackupInfo(path=entry, date=day, size=entry.stat().st_size))
        except OSError as e:
            logger.warning(f"Failed to list backups: {e}")
            return []

        backups.sort(key=lambda b: b.date, reverse=True)
        return backups

    # =========================================================================
    # Restore
    # =========================================================================

    def restore_file(self, backup_path: Path) -> None:
        """Replace the live database file with a copy of backup_path.

        The live handle must already be closed, and the backup validated.
        A copy that fails part way is removed again, so the live path is
        either a complete copy or absent (unless that cleanup fails too).

        Raises:
            FileNotFoundError: If the backup does not exist
            OSError: If deleting the live files or copying fails
        """
        if not backup_path.exists():
            raise FileNotFoundError(f"Backup file does not exist: {backup_path}")

        for sidecar in sidecar_paths(self.db_path):
            sidecar.unlink(missing_ok=True)
        self.db_path.unlink(missing_ok=True)
        try:
            shutil.copyfile(backup_path, self.db_path)
        except OSError:
            try:
                self.db_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.error(f"Failed to remove partial restore {self.db_path}: {cleanup_error}")
            raise
        logger.info(f"Restored database from backup: {backup_path}")

    def restore(self, backup_path: Path) -> bool:
        """Non-raising variant of restore_file()."""
        try:
            self.restore_file(backup_path)
            return True
        except OSError as e:
            logger.error(f"Failed to restore from backup: {e}")
            return False
