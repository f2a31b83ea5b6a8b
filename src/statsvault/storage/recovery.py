"""Corruption recovery for the stats database.

Opening an existing database file ends in one of three outcomes:

- Open directly: stale sidecars removed, file passes the integrity check
- Recover then open: the file is quarantined as stats.db.corrupted.<ms>,
  then backup candidates are tried newest-first until one validates and is
  restored; if none does, a fresh empty database is created
- Fail: nothing openable could be produced (the caller raises)

Recovery is an ordered list of strategies, each returning a tagged result,
so that "first validated candidate wins" can be tested per strategy.

Stale -wal/-shm files are deleted before the first integrity check. A WAL
holding committed but unflushed transactions from a crash is therefore
discarded rather than replayed; opening reliably takes priority.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from statsvault.constants import CORRUPTED_INFIX, DEFAULT_BUSY_TIMEOUT_MS
from statsvault.storage.backup import BackupManager, now_ms
from statsvault.storage.connection import open_connection, sidecar_paths
from statsvault.storage.integrity import (
    check_integrity,
    has_sqlite_header,
    remove_stale_wal_files,
    validate_database_file,
)
from statsvault.storage.types import BackupInfo, CorruptionRecoveryResult, OpenOutcome

logger = logging.getLogger(__name__)


class StrategyStatus(str, Enum):
    """Tag returned by a recovery strategy."""

    SUCCESS = "success"
    TRY_NEXT = "try_next"
    HARD_FAIL = "hard_fail"


@dataclass(frozen=True, slots=True)
class StrategyResult:
    status: StrategyStatus
    backup_path: Path | None = None
    error: str | None = None


class RecoveryStrategy(Protocol):
    """One step of the recovery cascade."""

    description: str

    def attempt(self) -> StrategyResult: ...


class RestoreFromBackup:
    """Validate one backup candidate and restore it over the live file."""

    def __init__(self, backup: BackupInfo, backups: BackupManager):
        self.backup = backup
        self._backups = backups
        self.description = f"backup {backup.path} ({backup.date})"

    def attempt(self) -> StrategyResult:
        # The candidate's own leftovers could replay unrelated pages
        remove_stale_wal_files(self.backup.path)

        check = validate_database_file(self.backup.path)
        if not check.ok:
            errors = "; ".join(check.errors)
            logger.warning(f"Backup {self.backup.date} failed integrity check ({errors}), trying next...")
            return StrategyResult(StrategyStatus.TRY_NEXT, self.backup.path, errors)

        try:
            self._backups.restore_file(self.backup.path)
        except OSError as e:
            if self._backups.db_path.exists():
                # A partial copy is still in place and cannot be trusted
                logger.error(f"Restoring backup {self.backup.path} failed: {e}")
                return StrategyResult(StrategyStatus.HARD_FAIL, self.backup.path, str(e))
            logger.warning(f"Restoring backup {self.backup.date} failed ({e}), trying next...")
            return StrategyResult(StrategyStatus.TRY_NEXT, self.backup.path, str(e))

        return StrategyResult(StrategyStatus.SUCCESS, self.backup.path)


@dataclass(frozen=True, slots=True)
class OpenResult:
    """Handle produced by CorruptionRecovery.open_validated().

    connection is None only in the Fail outcome.
    """

    connection: sqlite3.Connection | None
    outcome: OpenOutcome
    recovery: CorruptionRecoveryResult | None = None


class CorruptionRecovery:
    """Opens an existing database file, recovering it when it is corrupt.

    Args:
        db_path: Live database file path
        backups: Backup manager for the same path
        clock: Returns the current time in unix milliseconds
        busy_timeout_ms: Busy timeout for the connection handed back
    """

    def __init__(
        self,
        db_path: Path,
        backups: BackupManager,
        clock: Callable[[], int] = now_ms,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ):
        self.db_path = db_path
        self._backups = backups
        self._clock = clock
        self._busy_timeout_ms = busy_timeout_ms

    def open_validated(self) -> OpenResult:
        """Open the live file, running recovery if it fails validation."""
        remove_stale_wal_files(self.db_path)

        conn = self._open_directly()
        if conn is not None:
            return OpenResult(conn, OpenOutcome.OPEN_DIRECTLY)

        result = self.recover()
        if not result.recovered:
            logger.error(f"Database corruption recovery failed: {result.error}")
        return OpenResult(self._open_after_recovery(result), OpenOutcome.RECOVERED, result)

    def _open_directly(self) -> sqlite3.Connection | None:
        if not has_sqlite_header(self.db_path):
            logger.error(f"Database integrity check failed: {self.db_path} has no SQLite header")
            return None

        try:
            conn = open_connection(self.db_path, busy_timeout_ms=self._busy_timeout_ms)
        except sqlite3.Error as e:
            logger.error(f"Failed to open database: {e}")
            return None

        check = check_integrity(conn)
        if check.ok:
            return conn

        logger.error(f"Database integrity check failed: {', '.join(check.errors)}")
        conn.close()
        return None

    def _open_after_recovery(self, result: CorruptionRecoveryResult) -> sqlite3.Connection | None:
        if not result.recovered and self.db_path.exists():
            # Whatever is left on disk was never validated
            check = validate_database_file(self.db_path)
            if not check.ok:
                logger.error(f"Database still fails integrity check: {', '.join(check.errors)}")
                try:
                    self.quarantine()
                    for sidecar in sidecar_paths(self.db_path):
                        sidecar.unlink(missing_ok=True)
                except OSError as e:
                    logger.error(f"Failed to remove unrecoverable database: {e}")
                    return None

        existed = self.db_path.exists()
        try:
            conn = open_connection(self.db_path, busy_timeout_ms=self._busy_timeout_ms)
        except sqlite3.Error as e:
            logger.error(f"Failed to create database after recovery: {e}")
            return None

        if not existed:
            logger.info("Fresh database created after corruption recovery")
            return conn

        logger.info("Database opened after corruption recovery")
        return conn

    # =========================================================================
    # Recovery steps
    # =========================================================================

    def strategies(self) -> list[RecoveryStrategy]:
        """Backup candidates in the order they are tried (newest date key first)."""
        return [RestoreFromBackup(backup, self._backups) for backup in self._backups.list_backups()]

    def quarantine(self) -> Path | None:
        """Move the live file aside for forensics; delete it if the move fails.

        Raises:
            OSError: If the file can neither be renamed nor deleted
        """
        if not self.db_path.exists():
            return None

        base = f"{self.db_path.name}.{CORRUPTED_INFIX}.{self._clock()}"
        target = self.db_path.with_name(base)
        suffix = 0
        while target.exists():
            suffix += 1
            target = self.db_path.with_name(f"{base}.{suffix}")
        try:
            self.db_path.rename(target)
        except OSError as e:
            logger.error(f"Failed to quarantine corrupted database ({e}), deleting it")
            self.db_path.unlink()
            return None

        logger.warning(f"Corrupted database moved to: {target}")
        return target

    def recover(self) -> CorruptionRecoveryResult:
        """Quarantine the live file and restore the newest valid backup.

        Never raises; filesystem errors give recovered=False.
        """
        logger.warning(f"Attempting to recover from database corruption: {self.db_path}")

        try:
            quarantine_path = self.quarantine()
            for sidecar in sidecar_paths(self.db_path):
                sidecar.unlink(missing_ok=True)

            for strategy in self.strategies():
                logger.info(f"Attempting to restore from {strategy.description}")
                outcome = strategy.attempt()
                if outcome.status is StrategyStatus.SUCCESS:
                    logger.info(f"Successfully restored database from {strategy.description}")
                    return CorruptionRecoveryResult(
                        recovered=True,
                        restored_from_backup=True,
                        backup_path=outcome.backup_path,
                        quarantine_path=quarantine_path,
                    )
                if outcome.status is StrategyStatus.HARD_FAIL:
                    return CorruptionRecoveryResult(
                        recovered=False,
                        quarantine_path=quarantine_path,
                        error=outcome.error,
                    )
        except OSError as e:
            logger.error(f"Failed to recover from database corruption: {e}")
            return CorruptionRecoveryResult(recovered=False, error=str(e))

        logger.warning("No valid backup found, will create fresh database")
        return CorruptionRecoveryResult(recovered=True, quarantine_path=quarantine_path)
