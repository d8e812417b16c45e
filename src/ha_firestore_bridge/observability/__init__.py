"""Observability components: logging, metrics, and health checks."""

from ha_firestore_bridge.observability.health import HealthServer
from ha_firestore_bridge.observability.logging import setup_logging
from ha_firestore_bridge.observability.metrics import METRICS, MetricsServer

__all__ = ["setup_logging", "METRICS", "MetricsServer", "HealthServer"]
