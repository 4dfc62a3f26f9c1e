"""Error kinds raised inside the storage engine.

Listing, reading and search never let these escape to the caller; they
degrade to empty results. Deletion turns them into a failed DeleteResult.
"""


class SessionStoreError(Exception):
    """Base class for storage engine errors."""


class UnsupportedOperationError(SessionStoreError):
    """The operation is refused for this storage backend."""


class RemoteTransportError(SessionStoreError):
    """A remote shell command could not be executed."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class SchemaMismatchError(SessionStoreError):
    """An expected database table is absent."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Missing table: {table}")
        self.table = table
