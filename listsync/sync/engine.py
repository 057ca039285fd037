"""Replication engine: push local events, pull remote ones, retry with backoff.

One engine serves one peer. At most one sync cycle is in flight at a time;
triggers arriving while a cycle runs collapse into a pending-resync flag, and
the cycle that is running starts another as soon as it finishes. Local appends
and reads never wait on the network.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..compactor import SNAPSHOT_SEQ, Compactor
from ..context import CURSOR_KEY, ReplicaContext
from ..errors import PeerError, StorageError
from ..events import Event
from ..identity import IdentityProvider
from ..materializer import ChangeOrigin, Materializer, StateChange
from .peer import Peer
from .status import SyncStatus, SyncStatusInput, compute_sync_status, retry_delay

logger = logging.getLogger(__name__)


@dataclass
class SyncSettings:
    """Tuning knobs for the replication engine."""

    page_size: int = 500
    max_pages: int = 50
    base_retry_seconds: float = 5.0
    max_retry_seconds: float = 60.0
    max_retries: int = 5  # reporting threshold only; retries never stop
    debounce_seconds: float = 2.0
    online_debounce_seconds: float = 1.0
    compact_after_sync: bool = True


class SyncPhase(Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    BACKOFF = "backoff"


class SyncOutcome(Enum):
    """Outcome of a sync_cycle() call."""

    SUCCESS = "success"
    FAILED = "failed"
    COALESCED = "coalesced"  # folded into the cycle already running
    DISABLED = "disabled"


@dataclass
class SyncResult:
    """Result of a sync cycle."""

    outcome: SyncOutcome
    entries_pushed: int = 0
    entries_pulled: int = 0
    pages: int = 0
    error: str | None = None
    timestamp: datetime | None = None


StatusCallback = Callable[[SyncStatus], None]


class ReplicationEngine:
    """Keeps one replica's event log reconciled with a peer.

    Phases: IDLE -> SYNCING -> (IDLE | BACKOFF); BACKOFF -> SYNCING when the
    retry timer fires.
    """

    def __init__(
        self,
        context: ReplicaContext,
        identity: IdentityProvider,
        materializer: Materializer,
        peer: Peer | None,
        settings: SyncSettings | None = None,
        compactor: Compactor | None = None,
    ):
        """Initialize the engine.

        Args:
            context: Replica context (cursor persistence).
            identity: Identity of this replica (own events are not re-pulled).
            materializer: Materializer wrapping the local event log.
            peer: Reconciliation peer, or None when sync is not configured.
            settings: Paging, backoff and debounce settings.
            compactor: Optional compactor run after fully acknowledged cycles.
        """
        self._context = context
        self._identity = identity
        self._materializer = materializer
        self._log = materializer.log
        self._peer = peer
        self.settings = settings or SyncSettings()
        self._compactor = compactor

        self._loop: asyncio.AbstractEventLoop | None = None
        self._phase = SyncPhase.IDLE
        self._enabled = False
        self._online = True
        self._pending = False
        self._retry_count = 0
        self._retry_handle: asyncio.TimerHandle | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._last_sync: datetime | None = None
        self._last_error: str | None = None
        self._status_callbacks: list[StatusCallback] = []

    # ==================== State ====================

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def online(self) -> bool:
        return self._online

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_handle is not None

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last successful cycle."""
        return self._last_sync

    @property
    def cursor(self) -> int:
        """Highest peer seq absorbed by this replica."""
        value = self._context.storage.get(CURSOR_KEY)
        return int(value) if value else 0

    def _advance_cursor(self, seq: int) -> None:
        if seq > self.cursor:
            self._context.storage.put(CURSOR_KEY, str(seq))

    # ==================== Lifecycle ====================

    async def enable(self) -> SyncResult:
        """Start replicating and run an initial cycle."""
        if self._peer is None:
            logger.warning("Sync not configured: no peer")
            self._notify_status()
            return SyncResult(outcome=SyncOutcome.DISABLED, error="Sync not configured")

        self._loop = asyncio.get_running_loop()
        self._enabled = True
        self._materializer.subscribe(self._on_state_changed)
        logger.info("Replication enabled")
        self._notify_status()
        return await self.sync_cycle()

    def disable(self) -> None:
        """Stop replicating. Clears retry state and timers unconditionally."""
        self._enabled = False
        self._pending = False
        self._retry_count = 0
        self._cancel_retry()
        self._cancel_debounce()
        self._materializer.unsubscribe(self._on_state_changed)
        if self._phase is SyncPhase.BACKOFF:
            self._phase = SyncPhase.IDLE
        logger.info("Replication disabled")
        self._notify_status()

    async def wait_idle(self) -> None:
        """Wait for background cycles started by timers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self.disable()
        await self.wait_idle()

    # ==================== Triggers ====================

    def _on_state_changed(self, change: StateChange) -> None:
        if change.origin is ChangeOrigin.LOCAL:
            self.notify_local_change()

    def notify_local_change(self) -> None:
        """Request a push after a local mutation."""
        if not self._enabled:
            return
        if self._phase is SyncPhase.SYNCING:
            self._pending = True
            self._notify_status()
            return
        self._cancel_retry()
        self._schedule_cycle(self.settings.debounce_seconds)

    def set_online(self, online: bool) -> None:
        """Record a connectivity change; coming back online triggers a cycle."""
        was_online = self._online
        self._online = online

        if online and not was_online and self._enabled:
            logger.info("Connectivity restored, re-syncing")
            if self._phase is SyncPhase.SYNCING:
                self._pending = True
            else:
                self._schedule_cycle(self.settings.online_debounce_seconds)

        self._notify_status()

    # ==================== Timers ====================

    def _spawn_cycle(self) -> None:
        task = self._loop.create_task(self.sync_cycle())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Only local storage faults escape a cycle; they are fatal
            logger.error(f"Background sync cycle failed: {error}", exc_info=error)
            self._last_error = str(error)
            self.disable()

    def _schedule_cycle(self, delay: float) -> None:
        self._cancel_debounce()

        def fire() -> None:
            self._debounce_handle = None
            self._spawn_cycle()

        self._debounce_handle = self._loop.call_later(delay, fire)
        self._notify_status()

    def _schedule_retry(self, delay: float) -> None:
        self._cancel_retry()

        def fire() -> None:
            self._retry_handle = None
            self._spawn_cycle()

        self._retry_handle = self._loop.call_later(delay, fire)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    # ==================== Sync cycle ====================

    async def sync_cycle(self) -> SyncResult:
        """Run push then pull, single-flight.

        Returns:
            The result of the last cycle run by this call, or a COALESCED
            result when another cycle was already in flight.

        Raises:
            StorageError: If the local log cannot be read or written.
        """
        if not self._enabled:
            return SyncResult(outcome=SyncOutcome.DISABLED)

        if self._phase is SyncPhase.SYNCING:
            self._pending = True
            self._notify_status()
            return SyncResult(outcome=SyncOutcome.COALESCED)

        result = await self._run_cycle()
        while self._pending and self._enabled:
            self._pending = False
            logger.debug("Resync requested during cycle, running again")
            result = await self._run_cycle()
        return result

    async def _run_cycle(self) -> SyncResult:
        self._phase = SyncPhase.SYNCING
        self._notify_status()

        pushed = pulled = pages = 0
        try:
            pushed = await self._push()
            pulled, pages = await self._pull()
        except PeerError as e:
            self._retry_count += 1
            self._last_error = str(e)
            delay = retry_delay(
                self._retry_count,
                self.settings.base_retry_seconds,
                self.settings.max_retry_seconds,
            )
            logger.warning(
                f"Sync failed ({e}), retry {self._retry_count} in {delay:.1f}s"
            )
            self._phase = SyncPhase.BACKOFF
            if self._enabled:
                self._schedule_retry(delay)
            self._notify_status()
            return SyncResult(
                outcome=SyncOutcome.FAILED,
                entries_pushed=pushed,
                entries_pulled=pulled,
                pages=pages,
                error=str(e),
            )
        except StorageError:
            self._phase = SyncPhase.IDLE
            self._notify_status()
            raise

        self._retry_count = 0
        self._last_error = None
        self._cancel_retry()
        self._last_sync = datetime.now()
        self._phase = SyncPhase.IDLE

        self._maybe_compact()

        logger.info(f"Sync: pushed={pushed}, pulled={pulled}, pages={pages}")
        self._notify_status()
        return SyncResult(
            outcome=SyncOutcome.SUCCESS,
            entries_pushed=pushed,
            entries_pulled=pulled,
            pages=pages,
            timestamp=self._last_sync,
        )

    async def _push(self) -> int:
        """Submit unacknowledged events in one batch and record their seq."""
        pending = self._log.unacknowledged()
        if not pending:
            return 0

        logger.debug(f"Pushing {len(pending)} events")
        accepted = await self._peer.submit(pending)

        seq_map = {e.id: e.seq for e in accepted if e.seq is not None}
        acknowledged = self._log.acknowledge(seq_map)
        logger.info(f"Pushed {len(pending)} events, {acknowledged} acknowledged")
        return acknowledged

    async def _pull(self) -> tuple[int, int]:
        """Page through peer events after the cursor and merge them.

        Returns:
            Tuple of (events added locally, pages fetched).
        """
        own_id = self._identity.get_or_create_id()
        page_size = self.settings.page_size
        cursor = self.cursor
        added = 0
        pages = 0

        for _ in range(self.settings.max_pages):
            page = await self._peer.fetch(cursor, page_size)
            pages += 1
            if not page:
                break

            page_start = cursor
            remote: list[Event] = []
            for event in page:
                if event.seq is None:
                    logger.warning(f"Ignoring peer event {event.id} without seq")
                elif event.author_id != own_id:
                    remote.append(event)

            if remote:
                added += len(self._materializer.merge_remote(remote))

            page_max = max((e.seq for e in page if e.seq is not None), default=cursor)
            if page_max > cursor:
                cursor = page_max
                self._advance_cursor(cursor)

            # a page spanning page_size seqs is full even if malformed records were dropped
            if len(page) < page_size and cursor - page_start < page_size:
                break
        else:
            logger.warning(
                f"Pull stopped after {self.settings.max_pages} pages; "
                f"remaining events wait for the next cycle"
            )

        if added:
            logger.info(f"Pulled {added} remote events in {pages} page(s)")
        return added, pages

    def _maybe_compact(self) -> None:
        if not (self.settings.compact_after_sync and self._compactor):
            return
        events = self._log.load()
        if any(e.seq is None for e in events):
            return
        if all(e.seq == SNAPSHOT_SEQ for e in events):
            return
        self._compactor.compact()

    # ==================== Status ====================

    def on_status_change(self, callback: StatusCallback) -> None:
        """Register a callback invoked with the new status on every change."""
        self._status_callbacks.append(callback)

    def status(self) -> SyncStatus:
        return compute_sync_status(
            SyncStatusInput(
                is_configured=self._peer is not None,
                is_online=self._online,
                enabled=self._enabled,
                is_syncing=self._phase is SyncPhase.SYNCING,
                pending=self._pending,
                retry_count=self._retry_count,
                max_retries=self.settings.max_retries,
                base_retry_seconds=self.settings.base_retry_seconds,
                max_retry_seconds=self.settings.max_retry_seconds,
            )
        )

    def _notify_status(self) -> None:
        if not self._status_callbacks:
            return
        status = self.status()
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Status callback failed: {e}")

    def get_sync_status(self) -> dict[str, Any]:
        """Return a serializable summary of replication state."""
        log_stats = self._log.stats()
        return {
            **self.status().to_dict(),
            "phase": self._phase.value,
            "cursor": self.cursor,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error,
            "pending_events": log_stats["unacknowledged_events"],
            "total_events": log_stats["total_events"],
        }

    # ==================== Loop ====================

    async def sync_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run a cycle every interval_seconds until stop_event is set.

        Picks up peer changes when nothing local triggers a cycle.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            await self.sync_cycle()

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(interval_seconds)

        logger.info("Sync loop stopped")
