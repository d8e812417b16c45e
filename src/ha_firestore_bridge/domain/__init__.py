"""Domain models for the HA-Firestore Bridge."""

from ha_firestore_bridge.domain.errors import (
    BridgeError,
    HubAuthError,
    RemoteCommandError,
    RemoteQueryError,
    StoreUnavailableError,
    StoreWriteError,
    UnknownEntityError,
)
from ha_firestore_bridge.domain.models import (
    ChangeKind,
    CommandAck,
    DocumentChange,
    HubState,
    StateChange,
)

__all__ = [
    "BridgeError",
    "ChangeKind",
    "CommandAck",
    "DocumentChange",
    "HubAuthError",
    "HubState",
    "RemoteCommandError",
    "RemoteQueryError",
    "StateChange",
    "StoreUnavailableError",
    "StoreWriteError",
    "UnknownEntityError",
]
