"""Bidirectional state synchronization between the hub and the document store.

Hub -> store: a ``state_changed`` event for a switch or light is written to
the device document unless it repeats the last state the bridge propagated
for that entity (its own echo, or a no-op).

Store -> hub: a modified device document is compared with the live hub
state. On mismatch the engine issues an explicit ``turn_on``/``turn_off``,
waits for the hub to settle, reads the state back and writes that verified
state to the document. The verified value is recorded as the last synced
state, so the hub event caused by the command is suppressed as an echo.
Snapshots of the bridge's own writes never command the hub: a change carrying
a store revision the engine wrote, or repeating the last synced state, is
suppressed. A newer hub state is always already queued as a hub event.

Every trigger is handled at most once: adapter failures are logged with the
entity context and abandon the current attempt. The next independent trigger
(hub event or document change) repairs whatever was dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from ha_firestore_bridge.domain.errors import (
    RemoteCommandError,
    RemoteQueryError,
    StoreWriteError,
    UnknownEntityError,
)
from ha_firestore_bridge.domain.models import ChangeKind, DocumentChange, StateChange
from ha_firestore_bridge.mapping.identity import (
    SYNC_DOMAINS,
    IdentityRegistry,
    is_sync_eligible,
    split_entity_id,
)
from ha_firestore_bridge.observability.logging import get_logger
from ha_firestore_bridge.observability.metrics import METRICS
from ha_firestore_bridge.state.last_synced import LastSyncedStates
from ha_firestore_bridge.sync.lanes import OrderedLanes

if TYPE_CHECKING:
    from ha_firestore_bridge.broadcast import Broadcaster
    from ha_firestore_bridge.hub.client import HubClient
    from ha_firestore_bridge.store.firestore import FirestoreStore

logger = logging.getLogger(__name__)

# Structured decision log, one entry per processed trigger
sync_logger = get_logger("ha_firestore_bridge.sync")

SyncPath = Literal["hub_to_store", "store_to_hub"]

DEFAULT_SETTLE_DELAY = 0.5

# Store revisions remembered per document for recognizing own-write snapshots
OWN_WRITE_HISTORY = 16


class SyncOutcome(str, Enum):
    """Result of processing one trigger."""

    IGNORED = "ignored"
    """Not a sync-eligible change (other domain, no state, added/removed document)."""

    SUPPRESSED = "suppressed"
    """Echo of a bridge write, or a hub state equal to the last synced state."""

    WRITTEN = "written"
    """Hub state written to the document store."""

    NOOP = "noop"
    """Desired document state already matches the hub."""

    RECONCILED = "reconciled"
    """Command dispatched and the verified hub state written back."""

    FAILED = "failed"
    """An adapter failed; the attempt was abandoned."""


class SyncEngine:
    """Hub <-> document store synchronization engine.

    Hub events run on a per-entity lane, document changes on a per-document
    lane, so each channel keeps its arrival order for a given device while
    different devices proceed in parallel. The per-entity lock of
    ``LastSyncedStates`` makes each compare-and-set plus its store write
    atomic with respect to the other channel.
    """

    def __init__(
        self,
        dispatcher: HubClient,
        writer: FirestoreStore,
        *,
        registry: IdentityRegistry | None = None,
        last_synced: LastSyncedStates | None = None,
        domains: Iterable[str] = SYNC_DOMAINS,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        broadcaster: Broadcaster | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the engine.

        Args:
            dispatcher: Hub client for state queries and on/off commands.
            writer: Document store for device upserts.
            registry: Identity registry; one is created for ``domains`` if omitted.
            last_synced: Echo memory; a fresh table is created if omitted.
            domains: Entity domains to mirror.
            settle_delay: Seconds to wait after a command before verifying.
            broadcaster: Optional fan-out for every inbound hub event.
            sleep: Coroutine used for the settle delay.
        """
        self._dispatcher = dispatcher
        self._writer = writer
        self._domains = tuple(domains)
        self._registry = registry or IdentityRegistry(self._domains)
        self._last_synced = last_synced if last_synced is not None else LastSyncedStates()
        self._settle_delay = settle_delay
        self._broadcaster = broadcaster
        self._sleep = sleep
        self._lanes = OrderedLanes("sync lanes")
        self._own_writes: dict[str, deque[Any]] = {}
        self._hub_write_count = 0
        self._reconcile_count = 0
        self._error_count = 0

    @property
    def last_synced(self) -> LastSyncedStates:
        return self._last_synced

    @property
    def registry(self) -> IdentityRegistry:
        return self._registry

    @property
    def settle_delay(self) -> float:
        return self._settle_delay

    def _log_decision(
        self,
        path: SyncPath,
        entity_id: str | None,
        outcome: SyncOutcome,
        *,
        reason: str | None = None,
        **fields: Any,
    ) -> None:
        """Emit a structured entry describing how a trigger was handled.

        Ignored triggers are logged at debug level; everything else at info.
        """
        entry: dict[str, Any] = {"path": path, "outcome": outcome.value}
        if entity_id is not None:
            entry["entity_id"] = entity_id
        if reason is not None:
            entry["reason"] = reason
        entry.update(fields)

        if outcome is SyncOutcome.IGNORED:
            sync_logger.debug("sync_decision", **entry)
        else:
            sync_logger.info("sync_decision", **entry)

    def _device_fields(self, entity_id: str, is_on: bool) -> dict[str, Any]:
        """Fields written for a device; entity_id and domain are always present."""
        domain, _ = split_entity_id(entity_id)
        return {"entity_id": entity_id, "domain": domain, "state": is_on}

    def _remember_write(self, document_id: str, revision: Any) -> None:
        """Record the store revision produced by one of our own writes."""
        if revision is None:
            return
        history = self._own_writes.get(document_id)
        if history is None:
            history = self._own_writes[document_id] = deque(maxlen=OWN_WRITE_HISTORY)
        history.append(revision)

    def _echo_reason(
        self, entity_id: str, desired: bool, document_id: str, revision: Any
    ) -> str | None:
        """Explain why a document change is an echo of the bridge, or None.

        Must be called under the entity lock so writes in flight are recorded.
        """
        if revision is not None and revision in self._own_writes.get(document_id, ()):
            return "snapshot of bridge write"
        # A hub state differing from the last synced one is already queued as an event
        if self._last_synced.get(entity_id) == desired:
            return "matches last synced state"
        return None

    def _record_failure(self, error_type: str) -> None:
        self._error_count += 1
        METRICS.errors_total.labels(error_type=error_type).inc()

    # Path A: hub -> store

    async def handle_state_change(self, event: StateChange) -> SyncOutcome:
        """Propagate a hub state change to the document store.

        Args:
            event: The hub event.

        Returns:
            IGNORED, SUPPRESSED, WRITTEN or FAILED.
        """
        outcome = await self._handle_state_change(event)
        METRICS.hub_events_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _handle_state_change(self, event: StateChange) -> SyncOutcome:
        entity_id = event.entity_id

        if not is_sync_eligible(entity_id, self._domains):
            return SyncOutcome.IGNORED

        if not event.is_binary:
            self._log_decision(
                "hub_to_store",
                entity_id,
                SyncOutcome.IGNORED,
                reason=f"no on/off state ({event.state})",
            )
            return SyncOutcome.IGNORED

        is_on = event.is_on
        key = self._registry.remember(entity_id)

        async with self._last_synced.locked(entity_id):
            if not self._last_synced.check_and_update(entity_id, is_on):
                self._log_decision("hub_to_store", entity_id, SyncOutcome.SUPPRESSED, state=is_on)
                return SyncOutcome.SUPPRESSED

            METRICS.tracked_entities.set(self._last_synced.count)

            try:
                written = await self._writer.upsert(key, self._device_fields(entity_id, is_on))
            except StoreWriteError as e:
                logger.error("Failed to sync %s to the store: %s", entity_id, e)
                self._record_failure("store_write")
                METRICS.store_writes_total.labels(direction="hub_to_store", result="failure").inc()
                self._log_decision(
                    "hub_to_store", entity_id, SyncOutcome.FAILED, reason=str(e), state=is_on
                )
                return SyncOutcome.FAILED
            self._remember_write(key, written)

        self._hub_write_count += 1
        METRICS.store_writes_total.labels(direction="hub_to_store", result="success").inc()
        logger.info("Synced %s to %s: %s", entity_id, key, is_on)
        self._log_decision(
            "hub_to_store", entity_id, SyncOutcome.WRITTEN, document_key=key, state=is_on
        )
        return SyncOutcome.WRITTEN

    # Path B: store -> hub

    async def handle_document_change(self, change: DocumentChange) -> SyncOutcome:
        """Reconcile the hub with a changed device document.

        Only ``modified`` changes drive the hub. ``added`` documents teach the
        identity registry their entity id; ``removed`` documents are logged.

        Args:
            change: The document change.

        Returns:
            IGNORED, SUPPRESSED, NOOP, RECONCILED or FAILED.
        """
        METRICS.document_changes_total.labels(kind=change.kind.value).inc()
        outcome = await self._handle_document_change(change)
        METRICS.reconciliations_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _handle_document_change(self, change: DocumentChange) -> SyncOutcome:
        if change.kind is ChangeKind.ADDED:
            entity_id = change.data.get("entity_id")
            if isinstance(entity_id, str) and is_sync_eligible(entity_id, self._domains):
                self._registry.remember(entity_id)
            logger.debug("Device document added: %s", change.document_id)
            return SyncOutcome.IGNORED

        if change.kind is ChangeKind.REMOVED:
            logger.info("Device document removed: %s", change.document_id)
            return SyncOutcome.IGNORED

        desired = change.desired_state
        if desired is None:
            logger.warning(
                "Document %s has no boolean 'state' field; ignoring", change.document_id
            )
            self._log_decision(
                "store_to_hub",
                None,
                SyncOutcome.IGNORED,
                reason="no boolean state",
                document_id=change.document_id,
            )
            return SyncOutcome.IGNORED

        try:
            entity_id = self._registry.resolve(change.document_id, change.data)
        except UnknownEntityError as e:
            logger.error("Cannot reconcile document %s: %s", change.document_id, e)
            self._record_failure("unknown_entity")
            self._log_decision(
                "store_to_hub",
                None,
                SyncOutcome.FAILED,
                reason=str(e),
                document_id=change.document_id,
            )
            return SyncOutcome.FAILED

        return await self._reconcile(entity_id, desired, change.document_id, change.revision)

    async def _reconcile(
        self, entity_id: str, desired: bool, document_id: str, revision: Any = None
    ) -> SyncOutcome:
        """Drive the hub to ``desired`` and write the verified state back."""
        async with self._last_synced.locked(entity_id):
            echo = self._echo_reason(entity_id, desired, document_id, revision)
            if echo is not None:
                self._log_decision(
                    "store_to_hub", entity_id, SyncOutcome.SUPPRESSED, reason=echo, state=desired
                )
                return SyncOutcome.SUPPRESSED

            try:
                current = await self._dispatcher.get_state(entity_id)
            except RemoteQueryError as e:
                return self._abort(entity_id, "hub_query", f"state query failed: {e}")

            if current.is_on == desired:
                self._log_decision(
                    "store_to_hub", entity_id, SyncOutcome.NOOP, state=desired
                )
                return SyncOutcome.NOOP

            try:
                ack = await self._dispatcher.set_state(entity_id, desired)
            except RemoteCommandError as e:
                return self._abort(entity_id, "hub_command", f"command failed: {e}")

        logger.info(
            "Dispatched %s to %s; verifying in %.2fs", ack.service, entity_id, self._settle_delay
        )
        dispatched_at = time.monotonic()

        # The entity lock is released while the hub settles so hub events keep flowing
        await self._sleep(self._settle_delay)

        async with self._last_synced.locked(entity_id):
            try:
                verified = await self._dispatcher.get_state(entity_id)
            except RemoteQueryError as e:
                return self._abort(entity_id, "hub_query", f"verification query failed: {e}")

            self._last_synced.update(entity_id, verified.is_on)
            METRICS.tracked_entities.set(self._last_synced.count)

            try:
                written = await self._writer.upsert(
                    document_id, self._device_fields(entity_id, verified.is_on)
                )
            except StoreWriteError as e:
                METRICS.store_writes_total.labels(direction="store_to_hub", result="failure").inc()
                return self._abort(entity_id, "store_write", f"write-back failed: {e}")
            self._remember_write(document_id, written)

        METRICS.store_writes_total.labels(direction="store_to_hub", result="success").inc()
        METRICS.settle_verification_seconds.observe(time.monotonic() - dispatched_at)
        self._reconcile_count += 1

        if verified.is_on != desired:
            logger.warning(
                "%s did not converge: desired %s, hub reports %s",
                entity_id,
                desired,
                verified.state,
            )
        self._log_decision(
            "store_to_hub",
            entity_id,
            SyncOutcome.RECONCILED,
            desired=desired,
            verified=verified.is_on,
            service=ack.service,
        )
        return SyncOutcome.RECONCILED

    def _abort(self, entity_id: str, error_type: str, reason: str) -> SyncOutcome:
        logger.error("Reconciliation of %s abandoned: %s", entity_id, reason)
        self._record_failure(error_type)
        self._log_decision("store_to_hub", entity_id, SyncOutcome.FAILED, reason=reason)
        return SyncOutcome.FAILED

    # Scheduling

    async def submit_state_change(self, event: StateChange) -> None:
        """Broadcast a hub event and queue it on its entity's lane."""
        if self._broadcaster is not None:
            await self._broadcaster.publish(
                event.raw
                or {
                    "entity_id": event.entity_id,
                    "new_state": event.new_state,
                    "old_state": event.old_state,
                }
            )
        self._lanes.submit(f"hub:{event.entity_id}", lambda: self.handle_state_change(event))

    def submit_document_change(self, change: DocumentChange) -> None:
        """Queue a document change on its document's lane."""
        self._lanes.submit(
            f"doc:{change.document_id}", lambda: self.handle_document_change(change)
        )

    async def consume(
        self,
        hub_events: AsyncIterator[StateChange] | None = None,
        document_changes: AsyncIterator[DocumentChange] | None = None,
    ) -> None:
        """Feed both channels into the engine until they end.

        If either iterator raises, the other is cancelled and the error
        propagates to the caller.
        """

        async def pump_hub(events: AsyncIterator[StateChange]) -> None:
            async for event in events:
                await self.submit_state_change(event)

        async def pump_documents(changes: AsyncIterator[DocumentChange]) -> None:
            async for change in changes:
                self.submit_document_change(change)

        tasks: list[asyncio.Task[None]] = []
        if hub_events is not None:
            tasks.append(asyncio.create_task(pump_hub(hub_events), name="hub-events"))
        if document_changes is not None:
            tasks.append(
                asyncio.create_task(pump_documents(document_changes), name="document-changes")
            )
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until all queued triggers and broadcast deliveries have been processed."""
        await self._lanes.join()
        if self._broadcaster is not None:
            await self._broadcaster.drain()

    async def close(self) -> None:
        """Stop processing; pending verifications are abandoned."""
        await self._lanes.close()

    @property
    def hub_write_count(self) -> int:
        """Total hub -> store writes."""
        return self._hub_write_count

    @property
    def reconcile_count(self) -> int:
        """Total completed store -> hub reconciliations."""
        return self._reconcile_count

    @property
    def error_count(self) -> int:
        """Total failed attempts."""
        return self._error_count
