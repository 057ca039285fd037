"""Stable per-replica identifier."""

import logging
import uuid

from .context import CLIENT_ID_KEY, ReplicaContext

logger = logging.getLogger(__name__)


class IdentityProvider:
    """Issues and persists the id used to tag every locally authored event."""

    def __init__(self, context: ReplicaContext):
        self._context = context
        self._client_id: str | None = None

    def get_or_create_id(self) -> str:
        """Return this replica's id, generating and persisting it on first use.

        Raises:
            StorageError: If local storage cannot be read or written.
        """
        if self._client_id is not None:
            return self._client_id

        client_id = self._context.storage.get(CLIENT_ID_KEY)
        if not client_id:
            client_id = str(uuid.uuid4())
            self._context.storage.put(CLIENT_ID_KEY, client_id)
            logger.info(f"Generated replica id {client_id}")

        self._client_id = client_id
        return client_id
