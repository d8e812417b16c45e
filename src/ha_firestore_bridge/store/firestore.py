"""Cloud Firestore adapter: device document upserts and the collection change feed.

The Firebase Admin SDK is synchronous. Writes run in a worker thread, and
snapshot callbacks (which arrive on the SDK's listener thread) are handed to
the event loop through ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core.exceptions import GoogleAPIError

from ha_firestore_bridge.config import FirestoreConfig
from ha_firestore_bridge.domain.errors import StoreUnavailableError, StoreWriteError
from ha_firestore_bridge.domain.models import ChangeKind, DocumentChange

logger = logging.getLogger(__name__)

UPDATED_AT_FIELD = "updatedAt"
APP_NAME = "ha-firestore-bridge"


def _firebase_app(config: FirestoreConfig) -> firebase_admin.App:
    """Return the bridge's Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app(APP_NAME)
    except ValueError:
        pass

    path = config.service_account_path
    if not path.exists():
        raise StoreUnavailableError(f"Firebase service account file not found: {path}")

    try:
        cred = credentials.Certificate(str(path))
    except (ValueError, OSError) as e:
        raise StoreUnavailableError(f"Invalid Firebase service account {path}: {e}") from e

    options: dict[str, Any] = {}
    if config.project_id:
        options["projectId"] = config.project_id
    return firebase_admin.initialize_app(cred, options, name=APP_NAME)


class FirestoreStore:
    """Device collection in Cloud Firestore.

    ``upsert`` merges fields into a document and stamps ``updatedAt`` with
    the server timestamp, so repeating an upsert with the same fields changes
    nothing but the timestamp.
    """

    def __init__(self, collection: Any):
        """Initialize the store.

        Args:
            collection: Firestore ``CollectionReference`` for the device collection.
        """
        self._collection = collection
        self._watch: Any | None = None
        self._queue: asyncio.Queue[DocumentChange | None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def from_config(cls, config: FirestoreConfig) -> FirestoreStore:
        """Create a store from configuration.

        Raises:
            StoreUnavailableError: If the store is disabled or credentials are missing.
        """
        if not config.enabled:
            raise StoreUnavailableError("Firestore sync is disabled in configuration")

        app = _firebase_app(config)
        try:
            client = firestore.client(app)
        except (ValueError, GoogleAPIError) as e:
            raise StoreUnavailableError(f"Cannot create Firestore client: {e}") from e

        logger.info(
            "Firestore initialized (project=%s, collection=%s)",
            config.project_id or app.project_id,
            config.collection,
        )
        return cls(client.collection(config.collection))

    @property
    def is_watching(self) -> bool:
        return self._watch is not None

    async def upsert(self, document_key: str, fields: Mapping[str, Any]) -> Any:
        """Merge fields into a device document, creating it if missing.

        Args:
            document_key: Document id within the collection.
            fields: Fields to set; unrelated fields of the document are kept.

        Returns:
            Update time of the write, matching the ``revision`` of its snapshot.

        Raises:
            StoreWriteError: If the write fails.
        """
        payload = dict(fields)
        payload[UPDATED_AT_FIELD] = firestore.SERVER_TIMESTAMP
        document = self._collection.document(document_key)
        try:
            result = await asyncio.to_thread(document.set, payload, merge=True)
        except GoogleAPIError as e:
            raise StoreWriteError(f"Failed to write document {document_key}: {e}") from e
        logger.debug("Upserted %s: %s", document_key, fields)
        return result.update_time

    def watch(self) -> None:
        """Start listening to collection changes.

        Must be called from the event loop that will consume ``changes()``.
        """
        if self._watch is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._watch = self._collection.on_snapshot(self._on_snapshot)
        logger.info("Listening to Firestore changes")

    def _on_snapshot(self, _snapshot: Any, changes: Any, _read_time: Any) -> None:
        """Snapshot listener callback, runs on the SDK's listener thread."""
        if self._loop is None or self._queue is None:
            return
        for change in changes:
            try:
                kind = ChangeKind(change.type.name.lower())
            except ValueError:
                logger.warning("Unknown Firestore change type %s", change.type)
                continue
            record = DocumentChange(
                kind=kind,
                document_id=change.document.id,
                data=change.document.to_dict() or {},
                revision=change.document.update_time,
            )
            self._loop.call_soon_threadsafe(self._queue.put_nowait, record)

    async def changes(self) -> AsyncIterator[DocumentChange]:
        """Yield collection changes until ``close()`` is called."""
        self.watch()
        assert self._queue is not None
        while True:
            record = await self._queue.get()
            if record is None:
                return
            yield record

    def close(self) -> None:
        """Stop listening and end the ``changes()`` iterator."""
        if self._watch is not None:
            try:
                self._watch.unsubscribe()
            except GoogleAPIError as e:
                logger.warning("Failed to unsubscribe Firestore listener: %s", e)
            self._watch = None
        if self._loop is not None and self._queue is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
