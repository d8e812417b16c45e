"""In-memory synchronization state."""

from ha_firestore_bridge.state.last_synced import LastSyncedStates

__all__ = ["LastSyncedStates"]
