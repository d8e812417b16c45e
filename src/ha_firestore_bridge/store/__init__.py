"""Document store adapters."""

from ha_firestore_bridge.store.firestore import FirestoreStore

__all__ = ["FirestoreStore"]
