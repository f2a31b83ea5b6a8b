"""Key/value bookkeeping stored inside the database itself.

Schedule state lives here rather than in a sidecar file so that it
travels with the data it describes through backup and restore.
"""

import sqlite3

from statsvault.storage.schema import CREATE_META_TABLE_SQL


class MetaStore:
    """String key -> string value accessor for the _meta table."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def ensure_schema(self) -> None:
        self._conn.execute(CREATE_META_TABLE_SQL)

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM _meta WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row["value"])

    def get_int(self, key: str, default: int = 0) -> int:
        """Read a numeric value, falling back to default when absent or malformed."""
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default

    def set(self, key: str, value: str | int) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO _meta (key, value) VALUES (?, ?)",
            (key, str(value)),
        )
