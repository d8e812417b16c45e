"""Health check endpoint for the HA-Firestore Bridge."""

import json
import threading
import time
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

from ha_firestore_bridge import __version__


class HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler for health check endpoint."""

    check_func: Callable[[], dict[str, Any]] | None = None

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.path in ("/", "/health"):
            self._handle_health()
        elif self.path == "/ready":
            self._handle_ready()
        elif self.path == "/live":
            self._handle_live()
        else:
            self.send_response(404)
            self.end_headers()

    def _handle_health(self) -> None:
        """Handle /health endpoint."""
        if self.check_func:
            health = self.check_func()
        else:
            health = {"status": "unknown"}

        status_code = 200 if health.get("status") == "healthy" else 503

        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(health).encode())

    def _handle_ready(self) -> None:
        """Handle /ready endpoint (add-on watchdog readiness)."""
        if self.check_func:
            health = self.check_func()
            ready = health.get("hub_connected", False)
        else:
            ready = False

        self.send_response(200 if ready else 503)
        self.end_headers()

    def _handle_live(self) -> None:
        """Handle /live endpoint."""
        self.send_response(200)
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress request logging."""
        pass


class HealthServer:
    """HTTP server for health checks."""

    def __init__(
        self,
        port: int = 8080,
        check_func: Callable[[], dict[str, Any]] | None = None,
    ):
        """Initialize the health server.

        Args:
            port: Port to listen on.
            check_func: Function that returns health status dict.
        """
        self.port = port
        self._check_func = check_func
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the health server in a background thread."""

        class Handler(HealthHandler):
            check_func = self._check_func

        self._server = HTTPServer(("0.0.0.0", self.port), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the health server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None


def create_health_checker(
    hub_feed: Any,
    engine: Any | None = None,
    broadcaster: Any | None = None,
) -> Callable[[], dict[str, Any]]:
    """Create a health check function.

    Args:
        hub_feed: Hub event feed to check connection status.
        engine: Sync engine, or None when the document store is disabled.
        broadcaster: Optional broadcaster for subscriber counts.

    Returns:
        Function that returns health status dict.
    """

    def check() -> dict[str, Any]:
        hub_connected = bool(hub_feed.is_connected)

        health: dict[str, Any] = {
            "name": "HA-Firestore Bridge",
            "version": __version__,
            "status": "healthy" if hub_connected else "degraded",
            "timestamp": int(time.time() * 1000),
            "hub_connected": hub_connected,
            "firestore_enabled": engine is not None,
        }

        if engine is not None:
            health["tracked_entities"] = engine.last_synced.count
            health["hub_writes"] = engine.hub_write_count
            health["reconciliations"] = engine.reconcile_count
            health["errors"] = engine.error_count

        if broadcaster is not None:
            health["subscribers"] = broadcaster.subscriber_count

        return health

    return check
