"""Exceptions raised by the odsync sync core."""


class SyncError(Exception):
    """Base class for sync failures."""
    pass


class MissingDeltaTokenError(SyncError):
    """Raised when incremental sync runs before any initial sync."""

    def __init__(self, message: str = "Delta token missing; run initial sync first."):
        super().__init__(message)


class SyncCancelledError(SyncError):
    """Raised when an operation stops because cancellation was requested."""

    def __init__(self, message: str = "Sync operation was cancelled"):
        super().__init__(message)


class DeltaProcessingError(SyncError):
    """Raised when draining the delta feed fails. The cause is chained."""
    pass


class RepositoryError(SyncError):
    """Raised when the state repository cannot complete an operation."""
    pass
