"""Pure sync status computation, independent of any transport or event loop."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SyncState(Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"
    DISABLED = "disabled"


@dataclass
class SyncStatusInput:
    is_configured: bool
    is_online: bool
    enabled: bool
    is_syncing: bool
    pending: bool
    retry_count: int
    max_retries: int
    base_retry_seconds: float
    max_retry_seconds: float


@dataclass
class SyncStatus:
    """Observable sync state reported to consumers."""

    state: SyncState
    retry_count: int = 0
    max_retries: int | None = None
    next_retry_seconds: float | None = None
    exhausted: bool = False
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_seconds": self.next_retry_seconds,
            "exhausted": self.exhausted,
            "message": self.message,
        }


def retry_delay(retry_count: int, base_seconds: float, max_seconds: float) -> float:
    """Backoff delay before retry number retry_count (1-based)."""
    if retry_count <= 0:
        return 0.0
    return min(max_seconds, base_seconds * 2 ** (retry_count - 1))


def compute_sync_status(status: SyncStatusInput) -> SyncStatus:
    """Derive the reported state.

    Priority: not configured, offline, disabled, failing, syncing, synced.
    """
    if not status.is_configured:
        return SyncStatus(state=SyncState.ERROR, message="Sync not configured")
    if not status.is_online:
        return SyncStatus(state=SyncState.OFFLINE)
    if not status.enabled:
        return SyncStatus(state=SyncState.DISABLED)
    if status.retry_count > 0 and not status.is_syncing:
        exhausted = status.retry_count >= status.max_retries
        return SyncStatus(
            state=SyncState.ERROR,
            retry_count=status.retry_count,
            max_retries=status.max_retries,
            next_retry_seconds=retry_delay(
                status.retry_count,
                status.base_retry_seconds,
                status.max_retry_seconds,
            ),
            exhausted=exhausted,
            message="Sync retries exhausted, still retrying" if exhausted else None,
        )
    if status.is_syncing or status.pending:
        return SyncStatus(state=SyncState.SYNCING)
    return SyncStatus(state=SyncState.SYNCED)
