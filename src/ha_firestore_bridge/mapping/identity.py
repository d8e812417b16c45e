"""Mapping between hub entity ids and document store keys.

The derived document key is a storage-location convenience, not an identity:
``light.living_room`` and ``light.living-room`` both map to ``living-room``,
and so do ``light.x`` and ``switch.x``. Documents written by the bridge always
carry ``entity_id`` and ``domain`` fields, and identity is resolved from those
fields whenever they are present.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from ha_firestore_bridge.domain.errors import UnknownEntityError

logger = logging.getLogger(__name__)

# Domains mirrored between the hub and the document store
SYNC_DOMAINS: tuple[str, ...] = ("switch", "light")

# <domain>.<object_id>, as accepted by the hub
ENTITY_ID = re.compile(r"^([a-z0-9_]+)\.([A-Za-z0-9_\-]+)$")


def split_entity_id(entity_id: str) -> tuple[str, str]:
    """Split an entity id into domain and name.

    Args:
        entity_id: Hub entity id, e.g. ``switch.lamp1``.

    Returns:
        ``(domain, name)`` tuple.

    Raises:
        UnknownEntityError: If the id is not of the form ``<domain>.<name>``.

    Examples:
        >>> split_entity_id("light.living_room")
        ('light', 'living_room')
    """
    match = ENTITY_ID.match(entity_id or "")
    if match is None:
        raise UnknownEntityError(f"Malformed entity id: {entity_id!r}", key=entity_id)
    return match.group(1), match.group(2)


def is_sync_eligible(entity_id: str, domains: Iterable[str] = SYNC_DOMAINS) -> bool:
    """Check whether an entity belongs to a mirrored domain."""
    try:
        domain, _ = split_entity_id(entity_id)
    except UnknownEntityError:
        return False
    return domain in tuple(domains)


def document_key(entity_id: str, domains: Iterable[str] = SYNC_DOMAINS) -> str:
    """Derive the document key for a sync-eligible entity.

    Strips the domain prefix and replaces every underscore with a hyphen.
    Not injective: names differing only by underscore vs hyphen, or equal names
    in different domains, collapse to the same key.

    Raises:
        UnknownEntityError: If the entity is malformed or not sync-eligible.

    Examples:
        >>> document_key("light.living_room")
        'living-room'
        >>> document_key("switch.lamp1")
        'lamp1'
    """
    domain, name = split_entity_id(entity_id)
    if domain not in tuple(domains):
        raise UnknownEntityError(
            f"Entity {entity_id} is not in a synced domain", key=entity_id
        )
    return name.replace("_", "-")


class IdentityRegistry:
    """Resolves document keys back to entity ids.

    Learns the key of every entity seen on either feed. A key claimed by two
    distinct entities is marked ambiguous; documents under an ambiguous key
    resolve only through their own ``entity_id`` field.
    """

    def __init__(self, domains: Iterable[str] = SYNC_DOMAINS):
        self._domains = tuple(domains)
        self._by_key: dict[str, str] = {}
        self._ambiguous: set[str] = set()

    @property
    def domains(self) -> tuple[str, ...]:
        return self._domains

    @property
    def ambiguous_keys(self) -> frozenset[str]:
        """Keys claimed by more than one entity id."""
        return frozenset(self._ambiguous)

    def __len__(self) -> int:
        return len(self._by_key)

    def key_for(self, entity_id: str) -> str:
        """Document key for an entity (see ``document_key``)."""
        return document_key(entity_id, self._domains)

    def remember(self, entity_id: str) -> str:
        """Record an entity and return its document key."""
        key = self.key_for(entity_id)
        known = self._by_key.setdefault(key, entity_id)
        if known != entity_id and key not in self._ambiguous:
            self._ambiguous.add(key)
            logger.warning(
                "Document key %s is shared by %s and %s; resolving it by entity_id field only",
                key,
                known,
                entity_id,
            )
        return key

    def resolve(self, document_id: str, data: Mapping[str, Any]) -> str:
        """Resolve the entity id a document describes.

        Resolution order:
        1. The document's ``entity_id`` field.
        2. The entity previously seen under ``document_id``, if unambiguous.
        3. The document's ``domain`` field combined with ``document_id``.

        Args:
            document_id: Document key in the device collection.
            data: Document payload.

        Returns:
            Sync-eligible entity id.

        Raises:
            UnknownEntityError: If no rule yields a sync-eligible entity id.
        """
        entity_id = data.get("entity_id")
        if isinstance(entity_id, str) and entity_id:
            if not is_sync_eligible(entity_id, self._domains):
                raise UnknownEntityError(
                    f"Document {document_id} names non-synced entity {entity_id}",
                    key=document_id,
                )
            self.remember(entity_id)
            return entity_id

        if document_id in self._ambiguous:
            raise UnknownEntityError(
                f"Document key {document_id} is ambiguous and has no entity_id field",
                key=document_id,
            )

        known = self._by_key.get(document_id)
        if known is not None:
            return known

        domain = data.get("domain")
        if isinstance(domain, str) and domain in self._domains:
            candidate = f"{domain}.{document_id.replace('-', '_')}"
            if is_sync_eligible(candidate, self._domains):
                return candidate

        raise UnknownEntityError(
            f"Cannot resolve an entity for document {document_id}", key=document_id
        )
