"""Replication between listsync replicas and a reconciliation peer.

The peer assigns every accepted event a sequence number; replicas push their
unacknowledged events and pull everything after their cursor.
"""

from .engine import ReplicationEngine, SyncOutcome, SyncPhase, SyncResult, SyncSettings
from .peer import HttpPeer, LocalPeer, Peer
from .peer_store import PeerStore
from .status import SyncState, SyncStatus, compute_sync_status

__all__ = [
    "HttpPeer",
    "LocalPeer",
    "Peer",
    "PeerStore",
    "ReplicationEngine",
    "SyncOutcome",
    "SyncPhase",
    "SyncResult",
    "SyncSettings",
    "SyncState",
    "SyncStatus",
    "compute_sync_status",
]
