"""statsvault constants.

Implementation details that are not user-configurable. User settings
(data directory, retention, vacuum thresholds) live in statsvault.config.
"""

from pathlib import Path

# =============================================================================
# File layout
# =============================================================================

DEFAULT_DATA_DIR = Path.home() / ".statsvault"
DB_FILENAME = "stats.db"

# SQLite sidecar suffixes appended to the database path in WAL mode
WAL_SUFFIX = "-wal"
SHM_SUFFIX = "-shm"

# Backup artifact infixes: stats.db.daily.YYYY-MM-DD, stats.db.backup.<ms>
DAILY_BACKUP_INFIX = "daily"
LEGACY_BACKUP_INFIX = "backup"
CORRUPTED_INFIX = "corrupted"

# Every SQLite database file starts with this 16-byte magic string
SQLITE_HEADER_MAGIC = b"SQLite format 3\x00"

# =============================================================================
# Maintenance defaults
# =============================================================================

DAY_MS = 24 * 60 * 60 * 1000

DEFAULT_BACKUP_RETENTION_DAYS = 7
DEFAULT_VACUUM_THRESHOLD_BYTES = 100 * 1024 * 1024  # 100MB
DEFAULT_VACUUM_INTERVAL_MS = 7 * DAY_MS
DEFAULT_BUSY_TIMEOUT_MS = 5000

# =============================================================================
# Meta table keys
# =============================================================================

META_LAST_VACUUM_AT = "last_vacuum_at"

# =============================================================================
# Telemetry query ranges (days back from now, None = everything)
# =============================================================================

TIME_RANGE_DAYS: dict[str, int | None] = {
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
    "all": None,
}
