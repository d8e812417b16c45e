"""Main daemon orchestration for the HA-Firestore Bridge."""

import asyncio
import logging
import signal

from ha_firestore_bridge.broadcast import Broadcaster
from ha_firestore_bridge.config import BridgeConfig
from ha_firestore_bridge.domain.errors import HubAuthError, StoreUnavailableError
from ha_firestore_bridge.hub.client import HubClient
from ha_firestore_bridge.hub.events import HubEventFeed
from ha_firestore_bridge.observability.health import HealthServer, create_health_checker
from ha_firestore_bridge.observability.metrics import METRICS, MetricsServer
from ha_firestore_bridge.store.firestore import FirestoreStore
from ha_firestore_bridge.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

# Extra time granted to in-flight reconciliations and broadcasts on shutdown
DRAIN_GRACE_SECONDS = 5.0


class BridgeDaemon:
    """Main daemon wiring the hub feed, the document store and the sync engine."""

    def __init__(self, config: BridgeConfig):
        """Initialize the bridge daemon.

        Args:
            config: Bridge configuration.

        Raises:
            HubAuthError: If no hub access token is configured.
        """
        self.config = config
        self._shutdown = asyncio.Event()

        self._init_logging()

        hub = config.hub
        if hub.token is None:
            raise HubAuthError("No hub access token: set hub.token or SUPERVISOR_TOKEN")
        token = hub.token.get_secret_value()

        # Hub adapters
        self.hub_client = HubClient(
            hub.url,
            token=token,
            timeout=hub.timeout_seconds,
            verify_ssl=hub.verify_ssl,
        )
        self.hub_feed = HubEventFeed(
            hub.websocket_url,
            token,
            verify_ssl=hub.verify_ssl,
            reconnect_delay_min=hub.reconnect_delay_min,
            reconnect_delay_max=hub.reconnect_delay_max,
        )

        self.broadcaster = Broadcaster()

        # Document store; without it the bridge only relays hub events
        self.store: FirestoreStore | None = None
        self.engine: SyncEngine | None = None
        try:
            self.store = FirestoreStore.from_config(config.firestore)
        except StoreUnavailableError as e:
            logger.warning("Firestore sync disabled: %s", e)
        else:
            self.engine = SyncEngine(
                self.hub_client,
                self.store,
                domains=config.sync.domains,
                settle_delay=config.sync.settle_delay_seconds,
                broadcaster=self.broadcaster,
            )

        # Observability servers
        self.metrics_server = MetricsServer(config.observability.metrics_port)
        self.health_server = HealthServer(
            config.observability.health_port,
            check_func=create_health_checker(
                self.hub_feed,
                engine=self.engine,
                broadcaster=self.broadcaster,
            ),
        )

        METRICS.hub_connected.set(0)

    def _init_logging(self) -> None:
        """Initialize logging configuration."""
        from ha_firestore_bridge.observability.logging import setup_logging

        setup_logging(
            level=self.config.observability.log_level,
            format_type=self.config.observability.log_format,
        )

    def start(self) -> None:
        """Start the observability endpoints."""
        logger.info("Starting HA-Firestore Bridge daemon")
        self.metrics_server.start()
        self.health_server.start()

    async def _relay_only(self) -> None:
        """Broadcast hub events without store synchronization."""
        async for event in self.hub_feed.events():
            await self.broadcaster.publish(event.raw)

    async def run(self) -> None:
        """Run until a shutdown signal arrives or the hub rejects the token.

        Raises:
            HubAuthError: If the hub rejects the access token.
        """
        self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown, sig)

        if self.engine is not None and self.store is not None:
            work = self.engine.consume(self.hub_feed.events(), self.store.changes())
        else:
            work = self._relay_only()

        main = asyncio.create_task(work, name="bridge")
        stop = asyncio.create_task(self._shutdown.wait(), name="shutdown")
        try:
            done, _ = await asyncio.wait({main, stop}, return_when=asyncio.FIRST_COMPLETED)
            if main in done:
                # Feeds only end on failure
                main.result()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self.shutdown(main, stop)

    def request_shutdown(self, signum: int | None = None) -> None:
        """Ask the running daemon to stop."""
        if signum is not None:
            logger.info("Received signal %d", signum)
        self._shutdown.set()

    async def shutdown(self, *tasks: asyncio.Task[None]) -> None:
        """Gracefully shut down the daemon."""
        logger.info("Shutting down HA-Firestore Bridge daemon")
        self._shutdown.set()

        # Stop intake first so no new triggers are queued
        if self.store is not None:
            self.store.close()
        await self.hub_feed.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.engine is not None:
            grace = self.config.sync.settle_delay_seconds + DRAIN_GRACE_SECONDS
            try:
                await asyncio.wait_for(self.engine.drain(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("Abandoning in-flight reconciliations after %.1fs", grace)
            await self.engine.close()
        else:
            try:
                await asyncio.wait_for(self.broadcaster.drain(), timeout=DRAIN_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Abandoning %d broadcast deliveries", self.broadcaster.pending_count)

        await self.hub_client.aclose()

        self.health_server.stop()
        self.metrics_server.stop()

        logger.info("Daemon shutdown complete")


def run_daemon(config: BridgeConfig) -> None:
    """Run the bridge daemon.

    Args:
        config: Bridge configuration.
    """

    async def main() -> None:
        daemon = BridgeDaemon(config)
        await daemon.run()

    asyncio.run(main())
