"""Log compaction: fold acknowledged history into per-item snapshots."""

import logging
import uuid
from dataclasses import dataclass

from .event_log import EventLog
from .events import ItemCreated
from .identity import IdentityProvider
from .materializer import Materializer
from .projection import project

logger = logging.getLogger(__name__)

# seq carried by synthetic snapshots: acknowledged, but below any peer seq
SNAPSHOT_SEQ = 0


@dataclass
class CompactionResult:
    """Outcome of a compaction pass."""

    before: int = 0
    after: int = 0
    snapshots: int = 0
    unacknowledged: int = 0

    @property
    def removed(self) -> int:
        return self.before - self.after


class Compactor:
    """Rewrites the log as one snapshot per live item plus pending events."""

    def __init__(
        self,
        identity: IdentityProvider,
        log: EventLog,
        materializer: Materializer | None = None,
    ):
        self._identity = identity
        self._log = log
        self._materializer = materializer

    def compact(self) -> CompactionResult:
        """Compact the log.

        The whole log is projected; each surviving item becomes a synthetic,
        already-acknowledged ItemCreated carrying its full field state and
        per-field stamps. Unacknowledged events are kept verbatim after the
        snapshots, still unacknowledged.

        Returns:
            CompactionResult describing the rewrite.
        """
        events = self._log.load()
        if not events:
            return CompactionResult()

        pending = [e for e in events if e.seq is None]
        author_id = self._identity.get_or_create_id()

        snapshots = [
            ItemCreated(
                id=str(uuid.uuid4()),
                item_id=item.id,
                value=item.snapshot(),
                timestamp=item.created_at,
                author_id=author_id,
                seq=SNAPSHOT_SEQ,
            )
            for item in project(events)
        ]

        compacted = snapshots + pending
        if self._materializer is not None:
            self._materializer.replace(compacted)
        else:
            self._log.replace(compacted)

        result = CompactionResult(
            before=len(events),
            after=len(compacted),
            snapshots=len(snapshots),
            unacknowledged=len(pending),
        )
        logger.info(
            f"Compacted {result.before} events to {result.after} "
            f"({result.snapshots} snapshots + {result.unacknowledged} unacknowledged)"
        )
        return result
