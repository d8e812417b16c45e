"""Shared pytest fixtures for HA-Firestore Bridge tests."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ha_firestore_bridge.domain.models import CommandAck, HubState, StateChange


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers.

    Note: Markers are also defined in pyproject.toml [tool.pytest.ini_options].
    This function ensures they're registered even when running pytest directly.
    """
    config.addinivalue_line(
        "markers", "integration: in-process integration tests with a fake hub and store"
    )
    config.addinivalue_line("markers", "slow: slow-running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        if "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def _state_change(entity_id: str, state: str | None, old: str | None = None) -> StateChange:
    new_state = {"entity_id": entity_id, "state": state} if state is not None else None
    old_state = {"entity_id": entity_id, "state": old} if old is not None else None
    return StateChange(
        entity_id=entity_id,
        new_state=new_state,
        old_state=old_state,
        raw={"entity_id": entity_id, "new_state": new_state, "old_state": old_state},
    )


@pytest.fixture
def make_state_change() -> Callable[..., StateChange]:
    """Factory building StateChange events the way the hub event feed delivers them."""
    return _state_change


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    """Create a mock hub client; every entity reports 'off' by default."""
    dispatcher = MagicMock()

    async def get_state(entity_id: str) -> HubState:
        return HubState(entity_id=entity_id, state="off")

    async def set_state(entity_id: str, on: bool) -> CommandAck:
        return CommandAck(entity_id=entity_id, service="turn_on" if on else "turn_off")

    dispatcher.get_state = AsyncMock(side_effect=get_state)
    dispatcher.set_state = AsyncMock(side_effect=set_state)
    return dispatcher


@pytest.fixture
def mock_writer() -> MagicMock:
    """Create a mock document store."""
    writer = MagicMock()
    writer.upsert = AsyncMock(return_value=None)
    return writer


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Settle delay replacement that returns immediately."""
    return AsyncMock(return_value=None)


@pytest.fixture
def addon_options() -> dict[str, Any]:
    """Add-on options as the Supervisor writes them to /data/options.json."""
    return {
        "firebase_project_id": "home-devices",
        "firebase_service_account_path": "/config/sa.json",
        "firebase_collection": "device",
        "settle_delay_seconds": 0.25,
        "log_level": "debug",
    }
