"""Unit tests for the Firestore document store adapter."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
from firebase_admin import firestore
from google.api_core.exceptions import ServiceUnavailable

from ha_firestore_bridge.config import FirestoreConfig
from ha_firestore_bridge.domain.errors import StoreUnavailableError, StoreWriteError
from ha_firestore_bridge.domain.models import ChangeKind
from ha_firestore_bridge.store.firestore import FirestoreStore


@pytest.fixture
def mock_collection() -> MagicMock:
    """Create a mock Firestore CollectionReference."""
    return MagicMock()


def snapshot_change(
    kind: str, document_id: str, data: dict[str, Any] | None, update_time: Any = None
) -> SimpleNamespace:
    document = MagicMock()
    document.id = document_id
    document.update_time = update_time
    document.to_dict.return_value = data
    return SimpleNamespace(type=SimpleNamespace(name=kind), document=document)


class TestUpsert:
    """Tests for device document writes."""

    @pytest.mark.asyncio
    async def test_merge_with_server_timestamp(self, mock_collection: MagicMock) -> None:
        """Test that upserts merge and stamp updatedAt."""
        store = FirestoreStore(mock_collection)

        await store.upsert(
            "living-room", {"entity_id": "light.living_room", "domain": "light", "state": True}
        )

        mock_collection.document.assert_called_once_with("living-room")
        mock_collection.document.return_value.set.assert_called_once_with(
            {
                "entity_id": "light.living_room",
                "domain": "light",
                "state": True,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )

    @pytest.mark.asyncio
    async def test_returns_update_time(self, mock_collection: MagicMock) -> None:
        """Test that an upsert reports the update time of its write."""
        written_at = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)
        mock_collection.document.return_value.set.return_value = SimpleNamespace(
            update_time=written_at
        )
        store = FirestoreStore(mock_collection)

        revision = await store.upsert("lamp1", {"state": True})

        assert revision == written_at

    @pytest.mark.asyncio
    async def test_write_failure(self, mock_collection: MagicMock) -> None:
        """Test that SDK errors surface as StoreWriteError."""
        mock_collection.document.return_value.set.side_effect = ServiceUnavailable("down")
        store = FirestoreStore(mock_collection)

        with pytest.raises(StoreWriteError) as exc_info:
            await store.upsert("lamp1", {"state": False})

        assert isinstance(exc_info.value.__cause__, ServiceUnavailable)


class TestChangeFeed:
    """Tests for the snapshot listener bridge."""

    @pytest.mark.asyncio
    async def test_changes_from_listener_thread(self, mock_collection: MagicMock) -> None:
        """Test that listener callbacks arrive on the event loop as DocumentChanges."""
        store = FirestoreStore(mock_collection)
        store.watch()
        callback = mock_collection.on_snapshot.call_args.args[0]

        await asyncio.to_thread(
            callback,
            None,
            [
                snapshot_change("ADDED", "porch", {"entity_id": "light.porch", "state": False}),
                snapshot_change("MODIFIED", "lamp1", {"state": True}, update_time="rev-7"),
                snapshot_change("REMOVED", "old", None),
            ],
            None,
        )

        changes = store.changes()
        received = [await changes.__anext__() for _ in range(3)]
        store.close()

        assert [c.kind for c in received] == [
            ChangeKind.ADDED,
            ChangeKind.MODIFIED,
            ChangeKind.REMOVED,
        ]
        assert received[1].document_id == "lamp1"
        assert received[1].desired_state is True
        assert received[1].revision == "rev-7"
        assert received[0].revision is None
        assert received[2].data == {}
        with pytest.raises(StopAsyncIteration):
            await changes.__anext__()
        mock_collection.on_snapshot.return_value.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_watch_is_idempotent(self, mock_collection: MagicMock) -> None:
        """Test that the listener is registered once."""
        store = FirestoreStore(mock_collection)

        store.watch()
        store.watch()

        assert store.is_watching
        mock_collection.on_snapshot.assert_called_once()
        store.close()
        assert not store.is_watching

    @pytest.mark.asyncio
    async def test_unknown_change_type_skipped(self, mock_collection: MagicMock) -> None:
        """Test that unrecognized change types are dropped."""
        store = FirestoreStore(mock_collection)
        store.watch()
        callback = mock_collection.on_snapshot.call_args.args[0]

        callback(
            None,
            [
                snapshot_change("RENAMED", "x", {}),
                snapshot_change("MODIFIED", "lamp1", {"state": False}),
            ],
            None,
        )

        change = await store.changes().__anext__()
        store.close()

        assert change.document_id == "lamp1"


class TestFromConfig:
    """Tests for store initialization."""

    def test_disabled(self) -> None:
        """Test that a disabled store is unavailable."""
        with pytest.raises(StoreUnavailableError):
            FirestoreStore.from_config(FirestoreConfig(enabled=False))

    def test_missing_service_account(self, tmp_path: Path) -> None:
        """Test that a missing credentials file disables the store."""
        config = FirestoreConfig(service_account_path=tmp_path / "missing.json")

        with pytest.raises(StoreUnavailableError, match="not found"):
            FirestoreStore.from_config(config)
