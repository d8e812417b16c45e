"""Fan-out of hub state changes to in-process subscribers.

Every hub event is mirrored to subscribers verbatim, before any domain
filtering. A transport (a websocket server, a UI bridge) attaches by
subscribing a callback; a failing subscriber is logged and skipped.
Async subscribers run as their own tasks and never delay event intake.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from ha_firestore_bridge.observability.metrics import METRICS

logger = logging.getLogger(__name__)

# Subscribers receive the raw event data: {entity_id, new_state, old_state}
Subscriber = Callable[[dict[str, Any]], Awaitable[None] | None]


class Broadcaster:
    """Registry of state-change subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Future[Any]] = set()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            callback: Sync or async callable taking the event data.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(callback)
        logger.debug("Broadcast subscriber added (%d total)", len(self._subscribers))

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, data: dict[str, Any]) -> int:
        """Deliver event data to every subscriber.

        Sync subscribers run inline. Async subscribers are scheduled as tasks
        so a slow one never holds up the caller; ``drain()`` waits for them.

        Args:
            data: Raw hub event data.

        Returns:
            Number of subscribers the event was handed to without error.
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                result = callback(data)
            except Exception as e:
                self._report(callback, e)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(partial(self._delivered, callback))
            delivered += 1
        if self._subscribers:
            METRICS.broadcasts_total.inc()
        return delivered

    def _delivered(self, callback: Subscriber, task: asyncio.Future[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._report(callback, error)

    def _report(self, callback: Subscriber, error: BaseException) -> None:
        logger.error("Broadcast subscriber %r failed: %s", callback, error)
        METRICS.errors_total.labels(error_type="broadcast").inc()

    async def drain(self) -> None:
        """Wait for scheduled async deliveries to finish."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
