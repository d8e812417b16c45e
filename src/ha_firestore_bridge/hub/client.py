"""Home Assistant REST client used to read entity state and call services.

Failures surface as ``RemoteQueryError`` / ``RemoteCommandError`` and are
never retried here: the sync engine treats each trigger as at-most-once.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from ha_firestore_bridge.domain.errors import RemoteCommandError, RemoteQueryError
from ha_firestore_bridge.domain.models import CommandAck, HubState
from ha_firestore_bridge.mapping.identity import split_entity_id
from ha_firestore_bridge.observability.metrics import METRICS

logger = logging.getLogger(__name__)

SERVICE_TURN_ON = "turn_on"
SERVICE_TURN_OFF = "turn_off"


class HubClient:
    """Async client for the hub REST API.

    Implements the command dispatcher contract of the sync engine:
    ``get_state`` reads the current state of one entity and ``set_state``
    issues an explicit ``turn_on``/``turn_off`` (never ``toggle``).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        verify_ssl: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the hub client.

        Args:
            base_url: Base URL of the hub, e.g. ``http://supervisor/core``.
            token: Bearer token for authentication.
            timeout: Request timeout in seconds.
            verify_ssl: Whether to verify TLS certificates.
            transport: Optional transport override (used by tests).
        """
        self._base_url = base_url.rstrip("/")

        headers: dict[str, str] = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/api",
            headers=headers,
            timeout=timeout,
            verify=verify_ssl,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HubClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def get_state(self, entity_id: str) -> HubState:
        """Read the current state of an entity.

        Uses ``GET /api/states/{entity_id}``.

        Args:
            entity_id: Hub entity id.

        Returns:
            HubState with the state string and the raw state object.

        Raises:
            RemoteQueryError: If the request fails or the response is malformed.
        """
        started = time.perf_counter()
        try:
            response = await self._client.get(f"/states/{entity_id}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise RemoteQueryError(
                f"Failed to read state of {entity_id}: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteQueryError(f"Failed to read state of {entity_id}: {e}") from e
        except ValueError as e:
            raise RemoteQueryError(f"Invalid state payload for {entity_id}: {e}") from e
        finally:
            METRICS.hub_request_seconds.labels(operation="get_state").observe(
                time.perf_counter() - started
            )

        if not isinstance(data, dict) or not isinstance(data.get("state"), str):
            raise RemoteQueryError(f"State payload for {entity_id} has no 'state' field")

        return HubState(entity_id=entity_id, state=data["state"], raw=data)

    async def get_states(self) -> list[dict[str, Any]]:
        """Read the state of every entity (``GET /api/states``).

        Raises:
            RemoteQueryError: If the request fails.
        """
        try:
            response = await self._client.get("/states")
            response.raise_for_status()
            result: list[dict[str, Any]] = response.json()
            return result
        except httpx.HTTPStatusError as e:
            raise RemoteQueryError(
                f"Failed to read states: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteQueryError(f"Failed to read states: {e}") from e

    async def call_service(
        self,
        domain: str,
        service: str,
        data: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Call a hub service (``POST /api/services/{domain}/{service}``).

        Args:
            domain: Service domain, e.g. ``light``.
            service: Service name, e.g. ``turn_on``.
            data: Service data, typically ``{"entity_id": ...}``.

        Returns:
            States the hub reports as changed by the call.

        Raises:
            RemoteCommandError: If the call fails.
        """
        started = time.perf_counter()
        try:
            response = await self._client.post(f"/services/{domain}/{service}", json=data or {})
            response.raise_for_status()
            body = response.json() if response.content else []
        except httpx.HTTPStatusError as e:
            METRICS.hub_commands_total.labels(service=service, result="failure").inc()
            raise RemoteCommandError(
                f"Service {domain}.{service} failed: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            METRICS.hub_commands_total.labels(service=service, result="failure").inc()
            raise RemoteCommandError(f"Service {domain}.{service} failed: {e}") from e
        finally:
            METRICS.hub_request_seconds.labels(operation="call_service").observe(
                time.perf_counter() - started
            )

        METRICS.hub_commands_total.labels(service=service, result="success").inc()
        return body if isinstance(body, list) else []

    async def set_state(self, entity_id: str, on: bool) -> CommandAck:
        """Switch an entity on or off.

        Args:
            entity_id: Hub entity id.
            on: Target state.

        Returns:
            CommandAck for the service call.

        Raises:
            RemoteCommandError: If the call fails.
            UnknownEntityError: If the entity id is malformed.
        """
        domain, _ = split_entity_id(entity_id)
        service = SERVICE_TURN_ON if on else SERVICE_TURN_OFF
        changed = await self.call_service(domain, service, {"entity_id": entity_id})
        logger.debug("Called %s.%s for %s", domain, service, entity_id)
        return CommandAck(entity_id=entity_id, service=service, changed_states=changed)
