"""Home Assistant websocket event feed.

Handshake:
    1. Server sends ``{"type": "auth_required"}``
    2. Client sends ``{"type": "auth", "access_token": "..."}``
    3. Server replies ``{"type": "auth_ok"}`` or ``{"type": "auth_invalid"}``
    4. Client subscribes with ``{"id": N, "type": "subscribe_events",
       "event_type": "state_changed"}``

After that the server pushes ``{"type": "event", "event": {"data": {...}}}``
messages which are yielded as ``StateChange`` objects. A dropped connection
is re-established with exponential backoff; a rejected token is fatal.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from ha_firestore_bridge.domain.errors import HubAuthError
from ha_firestore_bridge.domain.models import StateChange
from ha_firestore_bridge.observability.metrics import METRICS

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 10.0
EVENT_TYPE_STATE_CHANGED = "state_changed"


def parse_event_message(message: dict[str, Any]) -> StateChange | None:
    """Convert a websocket ``event`` message into a StateChange.

    Args:
        message: Decoded websocket message.

    Returns:
        StateChange, or None if the message is not a state_changed event.
    """
    if message.get("type") != "event":
        return None
    event = message.get("event")
    if not isinstance(event, dict):
        return None
    event_type = event.get("event_type", EVENT_TYPE_STATE_CHANGED)
    if event_type != EVENT_TYPE_STATE_CHANGED:
        return None
    data = event.get("data")
    if not isinstance(data, dict):
        return None
    entity_id = data.get("entity_id")
    if not isinstance(entity_id, str) or not entity_id:
        return None
    new_state = data.get("new_state")
    old_state = data.get("old_state")
    return StateChange(
        entity_id=entity_id,
        new_state=new_state if isinstance(new_state, dict) else None,
        old_state=old_state if isinstance(old_state, dict) else None,
        raw=data,
    )


async def authenticate(ws: Any, token: str) -> str:
    """Run the auth handshake on an open websocket.

    Args:
        ws: Open websocket exposing ``receive_json`` and ``send_json``.
        token: Access token.

    Returns:
        The hub version reported in ``auth_ok``.

    Raises:
        HubAuthError: If the hub rejects the token or deviates from the protocol.
    """
    msg = await ws.receive_json(timeout=HANDSHAKE_TIMEOUT)
    if msg.get("type") != "auth_required":
        raise HubAuthError(f"Expected auth_required, got {msg.get('type')!r}")

    await ws.send_json({"type": "auth", "access_token": token})

    msg = await ws.receive_json(timeout=HANDSHAKE_TIMEOUT)
    msg_type = msg.get("type")
    if msg_type == "auth_invalid":
        raise HubAuthError(f"Hub rejected the access token: {msg.get('message', '')}")
    if msg_type != "auth_ok":
        raise HubAuthError(f"Unexpected auth response {msg_type!r}")

    version = str(msg.get("ha_version", "unknown"))
    logger.info("Authenticated with Home Assistant %s", version)
    return version


class HubEventFeed:
    """Authenticated, reconnecting subscription to hub state_changed events."""

    def __init__(
        self,
        url: str,
        token: str,
        verify_ssl: bool = True,
        reconnect_delay_min: float = 1.0,
        reconnect_delay_max: float = 60.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the event feed.

        Args:
            url: Websocket URL, e.g. ``ws://supervisor/core/api/websocket``.
            token: Access token.
            verify_ssl: Whether to verify TLS certificates.
            reconnect_delay_min: Initial reconnect backoff in seconds.
            reconnect_delay_max: Maximum reconnect backoff in seconds.
            session: Optional aiohttp session; one is created if omitted.
        """
        self._url = url
        self._token = token
        self._verify_ssl = verify_ssl
        self._delay_min = reconnect_delay_min
        self._delay_max = reconnect_delay_max
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._connected = False
        self._closing = False
        self._next_id = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _message_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        """Open the websocket, authenticate and subscribe."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        logger.info("Connecting to Home Assistant websocket %s", self._url)
        ws = await self._session.ws_connect(self._url, ssl=self._verify_ssl)
        try:
            await authenticate(ws, self._token)
            self._next_id = 0
            await self.subscribe(ws)
        except BaseException:
            await ws.close()
            raise
        return ws

    async def subscribe(self, ws: Any) -> int:
        """Subscribe to state_changed events and return the subscription id."""
        sub_id = self._message_id()
        await ws.send_json(
            {"id": sub_id, "type": "subscribe_events", "event_type": EVENT_TYPE_STATE_CHANGED}
        )
        logger.debug("Subscribed to %s (id=%d)", EVENT_TYPE_STATE_CHANGED, sub_id)
        return sub_id

    async def _stream(self, ws: aiohttp.ClientWebSocketResponse) -> AsyncIterator[StateChange]:
        """Yield state changes until the websocket closes."""
        async for raw in ws:
            if raw.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                try:
                    message = json.loads(raw.data)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    logger.warning("Ignoring malformed websocket message")
                    continue
                if not isinstance(message, dict):
                    continue
                if message.get("type") == "result" and not message.get("success", True):
                    logger.error(
                        "Hub rejected command %s: %s", message.get("id"), message.get("error")
                    )
                    continue
                change = parse_event_message(message)
                if change is not None:
                    yield change
            elif raw.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                logger.warning("Hub websocket closed (type=%s)", raw.type)
                break

    async def events(self) -> AsyncIterator[StateChange]:
        """Yield state changes forever, reconnecting on connection loss.

        Raises:
            HubAuthError: If the hub rejects the token.
        """
        delay = self._delay_min
        while not self._closing:
            try:
                self._ws = await self._connect()
            except HubAuthError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning("Hub websocket connect failed: %s; retrying in %.1fs", e, delay)
                METRICS.errors_total.labels(error_type="hub_connect").inc()
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._delay_max)
                continue

            self._connected = True
            METRICS.hub_connected.set(1)
            delay = self._delay_min
            try:
                async for change in self._stream(self._ws):
                    yield change
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning("Hub websocket error: %s", e)
                METRICS.errors_total.labels(error_type="hub_stream").inc()
            finally:
                self._connected = False
                METRICS.hub_connected.set(0)
                if self._ws is not None and not self._ws.closed:
                    await self._ws.close()
                self._ws = None

            if not self._closing:
                logger.info("Reconnecting to hub websocket in %.1fs", delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._delay_max)

    async def close(self) -> None:
        """Close the websocket and the session if owned."""
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._connected = False
