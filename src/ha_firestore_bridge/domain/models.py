"""Core domain models for the HA-Firestore Bridge."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

STATE_ON = "on"
STATE_OFF = "off"

# Hub states that carry a definite on/off value
BINARY_STATES = frozenset({STATE_ON, STATE_OFF})


@dataclass(frozen=True, slots=True)
class StateChange:
    """A ``state_changed`` event received from the hub event feed.

    The hub sends ``new_state`` as ``None`` when an entity is removed, and
    reports transient states such as ``unavailable`` or ``unknown``; both are
    treated as carrying no new state by the engine.
    """

    entity_id: str
    """Hub entity identifier, ``<domain>.<name>``."""

    new_state: dict[str, Any] | None
    """State object after the change (``{"state": "on", "attributes": ...}``)."""

    old_state: dict[str, Any] | None = None
    """State object before the change, if the hub sent one."""

    raw: dict[str, Any] = field(default_factory=dict)
    """The event data exactly as received, mirrored to broadcast subscribers."""

    @property
    def state(self) -> str | None:
        """The new state string, or None if the event carries none."""
        if not self.new_state:
            return None
        value = self.new_state.get("state")
        return value if isinstance(value, str) else None

    @property
    def is_binary(self) -> bool:
        """Whether the new state is a definite ``on``/``off`` value."""
        return self.state in BINARY_STATES

    @property
    def is_on(self) -> bool:
        return self.state == STATE_ON


@dataclass(frozen=True, slots=True)
class HubState:
    """Current state of an entity as reported by the hub REST API."""

    entity_id: str
    state: str
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_on(self) -> bool:
        return self.state == STATE_ON


@dataclass(frozen=True, slots=True)
class CommandAck:
    """Acknowledgement of a hub service call."""

    entity_id: str
    service: str
    """Service that was called, e.g. ``turn_on``."""

    changed_states: list[dict[str, Any]] = field(default_factory=list)
    """States the hub reports as changed by the call (may be empty)."""


class ChangeKind(str, Enum):
    """Kind of change reported by the document store feed."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class DocumentChange:
    """A change record from the document store collection feed."""

    kind: ChangeKind
    document_id: str
    """Document key within the device collection."""

    data: dict[str, Any] = field(default_factory=dict)
    """Document payload: ``{entity_id?, domain?, state: bool, updatedAt}``."""

    revision: Any = None
    """Store revision of the write that produced this change (Firestore update time)."""

    @property
    def desired_state(self) -> bool | None:
        """The desired on/off state, or None if the document has no boolean state."""
        value = self.data.get("state")
        return value if isinstance(value, bool) else None
