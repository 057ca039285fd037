"""Exception types for listsync."""


class ListsyncError(Exception):
    """Base class for all listsync errors."""


class StorageError(ListsyncError):
    """Raised when local persistence fails.

    Local storage faults are fatal: they are surfaced to the caller and never
    retried automatically.
    """


class PeerError(ListsyncError):
    """Raised when a push or pull against the peer fails.

    Peer faults are recoverable and drive the replication retry/backoff cycle.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidEventError(ListsyncError):
    """Raised when an event record cannot be decoded."""
