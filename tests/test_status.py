"""Tests for sync status computation."""

from listsync.sync.status import (
    SyncState,
    SyncStatusInput,
    compute_sync_status,
    retry_delay,
)


def status_input(**overrides):
    values = dict(
        is_configured=True,
        is_online=True,
        enabled=True,
        is_syncing=False,
        pending=False,
        retry_count=0,
        max_retries=5,
        base_retry_seconds=5,
        max_retry_seconds=60,
    )
    values.update(overrides)
    return SyncStatusInput(**values)


class TestRetryDelay:
    """Tests for retry_delay()."""

    def test_doubles_from_base(self):
        """Test exponential growth."""
        assert [retry_delay(n, 5, 60) for n in (1, 2, 3, 4)] == [5, 10, 20, 40]

    def test_capped(self):
        """Test the maximum delay."""
        assert retry_delay(5, 5, 60) == 60
        assert retry_delay(30, 5, 60) == 60

    def test_no_failures(self):
        """Test zero retries means no delay."""
        assert retry_delay(0, 5, 60) == 0


class TestComputeSyncStatus:
    """Tests for compute_sync_status()."""

    def test_not_configured_wins(self):
        """Test a missing peer is reported first."""
        status = compute_sync_status(status_input(is_configured=False, is_online=False))
        assert status.state is SyncState.ERROR
        assert status.message == "Sync not configured"

    def test_offline(self):
        """Test offline outranks disabled."""
        status = compute_sync_status(status_input(is_online=False, enabled=False))
        assert status.state is SyncState.OFFLINE

    def test_disabled(self):
        """Test a disabled engine."""
        assert compute_sync_status(status_input(enabled=False)).state is SyncState.DISABLED

    def test_failing(self):
        """Test retry details are reported between attempts."""
        status = compute_sync_status(status_input(retry_count=2))

        assert status.state is SyncState.ERROR
        assert status.retry_count == 2
        assert status.max_retries == 5
        assert status.next_retry_seconds == 10
        assert status.exhausted is False

    def test_exhausted(self):
        """Test retries at the threshold are flagged."""
        status = compute_sync_status(status_input(retry_count=5))
        assert status.exhausted is True

    def test_retrying_cycle_reports_syncing(self):
        """Test an in-flight retry reads as syncing."""
        status = compute_sync_status(status_input(retry_count=3, is_syncing=True))
        assert status.state is SyncState.SYNCING

    def test_pending(self):
        """Test a queued resync reads as syncing."""
        assert compute_sync_status(status_input(pending=True)).state is SyncState.SYNCING

    def test_synced(self):
        """Test the idle state."""
        status = compute_sync_status(status_input())
        assert status.state is SyncState.SYNCED
        assert status.to_dict()["state"] == "synced"
