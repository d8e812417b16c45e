"""Prometheus metrics for the HA-Firestore Bridge."""

import threading
from http.server import HTTPServer, SimpleHTTPRequestHandler
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class BridgeMetrics:
    """Collection of Prometheus metrics for the bridge."""

    def __init__(self) -> None:
        """Initialize metrics."""
        # Counters
        self.hub_events_total = Counter(
            "ha_fs_bridge_hub_events_total",
            "Total number of hub state_changed events processed",
            ["outcome"],  # ignored, suppressed, written, failed
        )

        self.document_changes_total = Counter(
            "ha_fs_bridge_document_changes_total",
            "Total number of document store changes received",
            ["kind"],  # added, modified, removed
        )

        self.reconciliations_total = Counter(
            "ha_fs_bridge_reconciliations_total",
            "Total number of store-to-hub reconciliation attempts",
            ["outcome"],  # suppressed, noop, reconciled, failed, ignored
        )

        self.hub_commands_total = Counter(
            "ha_fs_bridge_hub_commands_total",
            "Total number of hub service calls",
            ["service", "result"],  # result: 'success' or 'failure'
        )

        self.store_writes_total = Counter(
            "ha_fs_bridge_store_writes_total",
            "Total number of document store upserts",
            ["direction", "result"],  # direction: hub_to_store or store_to_hub
        )

        self.broadcasts_total = Counter(
            "ha_fs_bridge_broadcasts_total",
            "Total number of hub events fanned out to subscribers",
        )

        self.errors_total = Counter(
            "ha_fs_bridge_errors_total",
            "Total number of errors",
            ["error_type"],
        )

        # Gauges
        self.hub_connected = Gauge(
            "ha_fs_bridge_hub_connected",
            "Hub websocket status (1=connected, 0=disconnected)",
        )

        self.tracked_entities = Gauge(
            "ha_fs_bridge_tracked_entities",
            "Number of entities with a recorded last synced state",
        )

        self.active_lanes = Gauge(
            "ha_fs_bridge_active_lanes",
            "Number of per-entity processing lanes",
        )

        # Histograms
        self.settle_verification_seconds = Histogram(
            "ha_fs_bridge_settle_verification_seconds",
            "Time from hub command dispatch to verified state write",
            buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0],
        )

        self.hub_request_seconds = Histogram(
            "ha_fs_bridge_hub_request_seconds",
            "Duration of hub REST requests",
            ["operation"],  # get_state, call_service
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
        )


# Global metrics instance
METRICS = BridgeMetrics()


class MetricsHandler(SimpleHTTPRequestHandler):
    """HTTP handler for Prometheus metrics endpoint."""

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.path == "/metrics":
            self.send_response(200)
            self.send_header("Content-Type", CONTENT_TYPE_LATEST)
            self.end_headers()
            self.wfile.write(generate_latest())
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress request logging."""
        pass


class MetricsServer:
    """HTTP server for Prometheus metrics."""

    def __init__(self, port: int = 9090):
        """Initialize the metrics server.

        Args:
            port: Port to listen on.
        """
        self.port = port
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the metrics server in a background thread."""
        self._server = HTTPServer(("0.0.0.0", self.port), MetricsHandler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
