"""Bidirectional synchronization between the hub and the document store.

Hub state changes are mirrored into device documents; modified device
documents drive explicit hub commands with verified write-back.
"""

from ha_firestore_bridge.sync.engine import SyncEngine, SyncOutcome
from ha_firestore_bridge.sync.lanes import OrderedLanes

__all__ = ["OrderedLanes", "SyncEngine", "SyncOutcome"]
