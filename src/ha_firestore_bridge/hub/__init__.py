"""Home Assistant adapters: REST command dispatcher and websocket event feed."""

from ha_firestore_bridge.hub.client import HubClient
from ha_firestore_bridge.hub.events import HubEventFeed, parse_event_message

__all__ = ["HubClient", "HubEventFeed", "parse_event_message"]
