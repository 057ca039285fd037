"""FastAPI reference peer exposing the event API over HTTP."""

import logging
from datetime import datetime
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query, Response

from ..errors import InvalidEventError, StorageError
from ..events import event_from_dict
from ..projection import project
from .peer_store import PeerStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 500
MAX_PAGE_LIMIT = 1000


def create_app(store: PeerStore) -> FastAPI:
    """Create the peer application.

    Args:
        store: Sequenced event store backing the peer.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="listsync peer",
        description="Reconciliation peer for listsync replicas",
        version="0.1.0",
    )

    # Store references for route handlers
    app.state.store = store

    @app.post("/api/events")
    async def submit_events(body: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Accept a batch of events and return them with their seq."""
        records = body.get("events")
        if not isinstance(records, list) or not records:
            raise HTTPException(status_code=400, detail="Expected a non-empty 'events' list")

        try:
            events = [event_from_dict(record) for record in records]
        except InvalidEventError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        try:
            stored = store.submit(events)
        except StorageError as e:
            logger.error(f"Failed to store events: {e}")
            raise HTTPException(status_code=500, detail="Failed to store events") from e

        return {"events": [e.to_dict() for e in stored]}

    @app.get("/api/events")
    async def fetch_events(
        since: int = Query(0, ge=0),
        limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1),
    ) -> dict[str, Any]:
        """Return events after a sequence number, oldest first."""
        limit = min(limit, MAX_PAGE_LIMIT)
        events = store.fetch(since, limit)
        return {"events": [e.to_dict() for e in events]}

    @app.delete("/api/events", status_code=204)
    async def clear_events() -> Response:
        """Delete every stored event."""
        store.clear()
        return Response(status_code=204)

    @app.get("/api/state")
    async def state() -> dict[str, Any]:
        """Project every stored event into the current item list."""
        items = project(store.all_events())
        return {
            "timestamp": datetime.now().isoformat(),
            "count": len(items),
            "items": [item.to_dict() for item in items],
        }

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            **store.get_stats(),
        }

    return app
