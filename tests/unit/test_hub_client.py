"""Unit tests for the hub REST client."""

import json

import httpx
import pytest

from ha_firestore_bridge.domain.errors import (
    RemoteCommandError,
    RemoteQueryError,
    UnknownEntityError,
)
from ha_firestore_bridge.hub.client import HubClient


def make_client(transport: httpx.MockTransport) -> HubClient:
    return HubClient("http://hub.local:8123/", token="secret-token", transport=transport)


class TestGetState:
    """Tests for reading entity state."""

    @pytest.mark.asyncio
    async def test_reads_state(self) -> None:
        """Test a successful state query."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json={"entity_id": "switch.lamp1", "state": "on", "attributes": {}}
            )

        async with make_client(httpx.MockTransport(handler)) as client:
            state = await client.get_state("switch.lamp1")

        assert state.entity_id == "switch.lamp1"
        assert state.is_on
        assert state.raw["attributes"] == {}
        assert requests[0].url.path == "/api/states/switch.lamp1"
        assert requests[0].headers["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self) -> None:
        """Test that a 404 surfaces as RemoteQueryError with the status code."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "Entity not found."})

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(RemoteQueryError) as exc_info:
                await client.get_state("switch.missing")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Test that transport failures surface as RemoteQueryError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(RemoteQueryError) as exc_info:
                await client.get_state("switch.lamp1")

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_payload_without_state(self) -> None:
        """Test that a malformed payload is rejected."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"entity_id": "switch.lamp1"})

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(RemoteQueryError):
                await client.get_state("switch.lamp1")

    @pytest.mark.asyncio
    async def test_get_states(self) -> None:
        """Test listing all states."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/states"
            return httpx.Response(200, json=[{"entity_id": "switch.lamp1", "state": "off"}])

        async with make_client(httpx.MockTransport(handler)) as client:
            states = await client.get_states()

        assert states == [{"entity_id": "switch.lamp1", "state": "off"}]


class TestSetState:
    """Tests for on/off commands."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("on", "service"), [(True, "turn_on"), (False, "turn_off")])
    async def test_explicit_service(self, on: bool, service: str) -> None:
        """Test that commands are explicit turn_on/turn_off calls on the entity's domain."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[{"entity_id": "light.porch", "state": "on"}])

        async with make_client(httpx.MockTransport(handler)) as client:
            ack = await client.set_state("light.porch", on)

        assert requests[0].method == "POST"
        assert requests[0].url.path == f"/api/services/light/{service}"
        assert json.loads(requests[0].content) == {"entity_id": "light.porch"}
        assert ack.service == service
        assert ack.changed_states == [{"entity_id": "light.porch", "state": "on"}]

    @pytest.mark.asyncio
    async def test_empty_response_body(self) -> None:
        """Test a service call answered without a body."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        async with make_client(httpx.MockTransport(handler)) as client:
            ack = await client.set_state("switch.lamp1", True)

        assert ack.changed_states == []

    @pytest.mark.asyncio
    async def test_service_failure(self) -> None:
        """Test that a failing service call raises RemoteCommandError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="Internal Server Error")

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(RemoteCommandError) as exc_info:
                await client.set_state("switch.lamp1", True)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_malformed_entity_id(self) -> None:
        """Test that no request is made for a malformed entity id."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(UnknownEntityError):
                await client.set_state("lamp1", True)
