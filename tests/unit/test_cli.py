"""Unit tests for the command-line interface."""

from pathlib import Path
from typing import Any

import httpx
import pytest
from typer.testing import CliRunner

from ha_firestore_bridge import __version__
from ha_firestore_bridge.cli import app
from ha_firestore_bridge.domain.errors import RemoteQueryError
from ha_firestore_bridge.hub.client import HubClient

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a minimal configuration file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "hub:\n  url: http://homeassistant.local:8123\n  token: abc\n"
        "observability:\n  health_port: 18080\n"
    )
    return path


class TestVersion:
    """Tests for the version command."""

    def test_version(self) -> None:
        """Test printing the version."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestValidate:
    """Tests for the validate command."""

    def test_valid_config(self, config_file: Path) -> None:
        """Test a valid configuration summary."""
        result = runner.invoke(app, ["validate", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Configuration valid" in result.output
        assert "http://homeassistant.local:8123" in result.output
        assert "Hub token: set" in result.output
        assert "switch, light" in result.output

    def test_invalid_config(self, tmp_path: Path) -> None:
        """Test that validation errors exit non-zero."""
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  settle_delay_seconds: -2\n")

        result = runner.invoke(app, ["validate", "-c", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestStatus:
    """Tests for the status command."""

    def test_running_bridge(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test reporting a healthy bridge."""
        urls: list[str] = []

        def fake_get(url: str, **kwargs: Any) -> httpx.Response:
            urls.append(url)
            return httpx.Response(
                200,
                json={
                    "status": "healthy",
                    "hub_connected": True,
                    "firestore_enabled": True,
                    "tracked_entities": 4,
                },
            )

        monkeypatch.setattr(httpx, "get", fake_get)

        result = runner.invoke(app, ["status", "-c", str(config_file)])

        assert result.exit_code == 0
        assert urls == ["http://localhost:18080/health"]
        assert "Status: healthy" in result.output
        assert "Tracked entities: 4" in result.output

    def test_degraded_bridge(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a degraded bridge exits non-zero but still reports."""

        def fake_get(url: str, **kwargs: Any) -> httpx.Response:
            return httpx.Response(503, json={"status": "degraded", "hub_connected": False})

        monkeypatch.setattr(httpx, "get", fake_get)

        result = runner.invoke(app, ["status", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "Status: degraded" in result.output

    def test_not_running(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test an unreachable health endpoint."""

        def fake_get(url: str, **kwargs: Any) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx, "get", fake_get)

        result = runner.invoke(app, ["status", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "not running" in result.output


class TestEntities:
    """Tests for the entities command."""

    def test_lists_mirrored_entities(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that only switches and lights are listed, with their document keys."""

        async def fake_get_states(self: HubClient) -> list[dict[str, Any]]:
            return [
                {"entity_id": "switch.lamp1", "state": "on"},
                {"entity_id": "sensor.temperature", "state": "21.5"},
                {"entity_id": "light.living_room", "state": "off"},
            ]

        monkeypatch.setattr(HubClient, "get_states", fake_get_states)

        result = runner.invoke(app, ["entities", "-c", str(config_file)])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines.index("light.living_room: off -> living-room") < lines.index(
            "switch.lamp1: on -> lamp1"
        )
        assert "sensor.temperature" not in result.output
        assert "2 of 3 entities mirrored" in lines

    def test_hub_unreachable(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a failed hub query exits non-zero."""

        async def fake_get_states(self: HubClient) -> list[dict[str, Any]]:
            raise RemoteQueryError("Failed to read states: connection refused")

        monkeypatch.setattr(HubClient, "get_states", fake_get_states)

        result = runner.invoke(app, ["entities", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "connection refused" in result.output
