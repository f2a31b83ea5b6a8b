"""Configuration settings for statsvault.

This module provides Pydantic Settings for configuration management.
All settings are loaded from environment variables with the STATSVAULT_
prefix (or a .env file). Every setting has a working default so the
store can be embedded without any configuration.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from statsvault.constants import (
    DB_FILENAME,
    DEFAULT_BACKUP_RETENTION_DAYS,
    DEFAULT_BUSY_TIMEOUT_MS,
    DEFAULT_DATA_DIR,
    DEFAULT_VACUUM_INTERVAL_MS,
    DEFAULT_VACUUM_THRESHOLD_BYTES,
)


class StatsSettings(BaseSettings):
    """Configuration settings for the statsvault store.

    Attributes:
        data_dir: Per-installation directory holding the database and its backups
        db_filename: Name of the main database file inside data_dir
        log_level: Logging level used by the CLI
        backup_retention_days: Daily backups older than this are rotated out
        vacuum_threshold_bytes: Minimum file size before VACUUM is worth running
        vacuum_interval_ms: Minimum time between two scheduled VACUUM runs
        busy_timeout_ms: SQLite busy timeout for the owning connection
    """

    model_config = SettingsConfigDict(
        env_prefix="STATSVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Allow extra env vars without error
    )

    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Directory holding the database file and its backups",
    )
    db_filename: str = Field(default=DB_FILENAME, description="Database file name")

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    backup_retention_days: int = Field(
        default=DEFAULT_BACKUP_RETENTION_DAYS,
        ge=1,
        description="Days of daily backups to keep",
    )
    vacuum_threshold_bytes: int = Field(
        default=DEFAULT_VACUUM_THRESHOLD_BYTES,
        ge=0,
        description="Database size at which the scheduled VACUUM runs",
    )
    vacuum_interval_ms: int = Field(
        default=DEFAULT_VACUUM_INTERVAL_MS,
        ge=0,
        description="Minimum milliseconds between scheduled VACUUM runs",
    )
    busy_timeout_ms: int = Field(
        default=DEFAULT_BUSY_TIMEOUT_MS,
        ge=0,
        description="SQLite busy timeout in milliseconds",
    )

    def get_db_path(self) -> Path:
        """Get the database path, expanding user home."""
        return (self.data_dir.expanduser() / self.db_filename).resolve()
