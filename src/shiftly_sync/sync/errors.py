"""Exceptions raised while reconciling the two stores."""


class SyncError(Exception):
    """Base exception for sync operations."""


class SyncTableError(SyncError):
    """Copying one table to the primary failed; the run continues."""

    def __init__(self, table: str, copied: int, cause: BaseException):
        self.table = table
        self.copied = copied
        self.cause = cause
        super().__init__(
            f"Sync of table {table} failed after {copied} committed rows: "
            f"{cause}"
        )


class SyncRunAbortedError(SyncError):
    """The primary became unreachable mid-run; remaining tables skipped."""

    def __init__(self, table: str, cause: BaseException):
        self.table = table
        self.cause = cause
        super().__init__(f"Primary lost while syncing {table}: {cause}")


class BufferReplayError(SyncError):
    """A queued write still could not be applied to the primary."""

    def __init__(self, natural_key: str, cause: BaseException):
        self.natural_key = natural_key
        self.cause = cause
        super().__init__(f"Replay of {natural_key} failed: {cause}")
