"""Mapping layer between hub entity ids and document store keys."""

from ha_firestore_bridge.mapping.identity import (
    SYNC_DOMAINS,
    IdentityRegistry,
    document_key,
    is_sync_eligible,
    split_entity_id,
)

__all__ = [
    "SYNC_DOMAINS",
    "IdentityRegistry",
    "document_key",
    "is_sync_eligible",
    "split_entity_id",
]
