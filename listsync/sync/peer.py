"""Peer transports for replication.

A peer accepts batches of events (assigning each a sequence number) and
serves events back in sequence order. Authentication and framing belong to
the transport and are out of scope here.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import InvalidEventError, PeerError, StorageError
from ..events import Event, event_from_dict
from .peer_store import PeerStore

logger = logging.getLogger(__name__)


def decode_events(records: Any) -> list[Event]:
    """Decode peer records, dropping malformed ones."""
    if not isinstance(records, list):
        raise PeerError(f"Peer returned a malformed event list: {type(records).__name__}")

    events = []
    for record in records:
        try:
            events.append(event_from_dict(record))
        except InvalidEventError as e:
            logger.warning(f"Dropping malformed event from peer: {e}")
    return events


class Peer(ABC):
    """Reconciliation peer contract."""

    @abstractmethod
    async def submit(self, events: list[Event]) -> list[Event]:
        """Push a batch; returns the events with their peer-assigned seq.

        Must be safe to call repeatedly with the same batch.
        """

    @abstractmethod
    async def fetch(self, since_seq: int, limit: int) -> list[Event]:
        """Return up to limit events with seq > since_seq, ascending by seq."""


class LocalPeer(Peer):
    """In-process peer backed by a PeerStore."""

    def __init__(self, store: PeerStore):
        self.store = store

    async def submit(self, events: list[Event]) -> list[Event]:
        await asyncio.sleep(0)
        try:
            return self.store.submit(events)
        except StorageError as e:
            raise PeerError(str(e)) from e

    async def fetch(self, since_seq: int, limit: int) -> list[Event]:
        await asyncio.sleep(0)
        try:
            return self.store.fetch(since_seq, limit)
        except StorageError as e:
            raise PeerError(str(e)) from e


class HttpPeer(Peer):
    """Peer reached over the HTTP event API.

    Each call is a single request; retrying is the replication engine's job.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP peer.

        Args:
            base_url: Base URL of the peer (e.g., "http://peer:8765").
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used to mount an app in tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.ConnectError as e:
            raise PeerError(f"Connection failed: {e}") from e
        except httpx.TimeoutException as e:
            raise PeerError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise PeerError(f"Request error: {e}") from e

        if response.status_code >= 400:
            raise PeerError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PeerError(f"Peer returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise PeerError("Peer returned an unexpected response body")
        return data

    async def submit(self, events: list[Event]) -> list[Event]:
        data = await self._request(
            "POST", "/api/events", json={"events": [e.to_dict() for e in events]}
        )
        return decode_events(data.get("events", []))

    async def fetch(self, since_seq: int, limit: int) -> list[Event]:
        data = await self._request(
            "GET", "/api/events", params={"since": since_seq, "limit": limit}
        )
        return decode_events(data.get("events", []))
