"""Exceptions raised by the statsvault storage layer.

Structured operation failures (vacuum, backup, restore) are reported
through result objects instead; only the cases below propagate.
"""


class StatsDBError(Exception):
    """No valid database could be opened, recovered or created."""

    pass


class MigrationError(StatsDBError):
    """A schema migration failed and was rolled back."""

    def __init__(self, version: int, message: str):
        self.version = version
        super().__init__(f"Migration to version {version} failed: {message}")


class DatabaseNotInitializedError(RuntimeError):
    """The database handle was requested before initialize() completed.

    This signals a caller bug, not a recoverable runtime condition.
    """

    def __init__(self) -> None:
        super().__init__("Database not initialized")
