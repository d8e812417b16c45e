"""Echo memory: the last on/off value the bridge propagated per entity."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class LastSyncedStates:
    """Track the last state the bridge itself propagated for each entity.

    A hub event whose state equals the recorded value is either the echo of
    a command the bridge issued or a no-op, and is not written to the store
    again. Entries live in memory only; a restart re-syncs each entity on its
    first event.

    Each entity has its own ``asyncio.Lock``. Callers that need a
    compare-and-set spanning awaits (a store write, a hub query) hold
    ``locked(entity_id)`` around it. Entries are never evicted; the table is
    bounded by the device set.
    """

    def __init__(self) -> None:
        self._states: dict[str, bool] = {}
        self._updated_at: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, entity_id: str) -> bool | None:
        """Return the recorded state, or None if the entity was never synced."""
        return self._states.get(entity_id)

    def has_changed(self, entity_id: str, is_on: bool) -> bool:
        """Check whether a state differs from the recorded one.

        Args:
            entity_id: Hub entity id.
            is_on: Observed state.

        Returns:
            True if the entity was never synced or the value differs.
        """
        previous = self._states.get(entity_id)
        return previous is None or previous != is_on

    def update(self, entity_id: str, is_on: bool) -> None:
        """Record the state most recently propagated for an entity."""
        self._states[entity_id] = is_on
        self._updated_at[entity_id] = time.time()

    def check_and_update(self, entity_id: str, is_on: bool) -> bool:
        """Record a state if it differs from the recorded one.

        Runs without awaiting, so it is atomic with respect to other tasks on
        the same event loop.

        Returns:
            True if the value was recorded, False if it was an echo.
        """
        if not self.has_changed(entity_id, is_on):
            return False
        self.update(entity_id, is_on)
        return True

    def updated_at(self, entity_id: str) -> float | None:
        """Unix timestamp of the last update for an entity."""
        return self._updated_at.get(entity_id)

    def lock_for(self, entity_id: str) -> asyncio.Lock:
        """Return the lock guarding an entity, creating it on first use."""
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = self._locks[entity_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def locked(self, entity_id: str) -> AsyncIterator[None]:
        """Hold the entity's lock for the duration of the block."""
        async with self.lock_for(entity_id):
            yield

    def snapshot(self) -> dict[str, bool]:
        """Copy of all recorded states."""
        return dict(self._states)

    def clear(self) -> None:
        """Forget all recorded states; entity locks are kept for current holders."""
        self._states.clear()
        self._updated_at.clear()
        logger.info("Cleared last synced states")

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._states

    @property
    def count(self) -> int:
        """Number of tracked entities."""
        return len(self._states)
