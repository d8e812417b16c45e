"""Ordered per-key work lanes.

Each key gets an ``asyncio.Queue`` drained by a single worker task, so work
submitted under one key runs strictly in submission order while different
keys run concurrently. Lanes are created on first use and kept for the life
of the process; the key space is the finite device set.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ha_firestore_bridge.observability.metrics import METRICS

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class OrderedLanes:
    """Per-key FIFO executors on the running event loop."""

    def __init__(self, name: str = "lanes") -> None:
        self._name = name
        self._queues: dict[str, asyncio.Queue[Job]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._closed = False
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def submit(self, key: str, job: Job) -> None:
        """Queue a job on the lane for ``key``.

        Args:
            key: Lane key, e.g. ``hub:switch.lamp1``.
            job: Zero-argument coroutine function.

        Raises:
            RuntimeError: If the lanes were closed.
        """
        if self._closed:
            raise RuntimeError(f"{self._name} are closed")
        queue = self._queues.get(key)
        if queue is None:
            queue = self._queues[key] = asyncio.Queue()
            self._workers[key] = asyncio.create_task(
                self._run(key, queue), name=f"{self._name}:{key}"
            )
            METRICS.active_lanes.inc()
        self._pending += 1
        self._idle.clear()
        queue.put_nowait(job)

    async def _run(self, key: str, queue: "asyncio.Queue[Job]") -> None:
        while True:
            job = await queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Handlers catch their own adapter errors; this keeps the lane alive
                logger.exception("Unhandled error in %s lane %s", self._name, key)
                METRICS.errors_total.labels(error_type="lane").inc()
            finally:
                queue.task_done()
                self._pending -= 1
                if self._pending == 0:
                    self._idle.set()

    async def join(self) -> None:
        """Wait until every queued job, including jobs queued meanwhile, has run."""
        await self._idle.wait()

    async def close(self) -> None:
        """Cancel all workers; queued and in-flight jobs are abandoned."""
        self._closed = True
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        METRICS.active_lanes.dec(len(workers))
        self._workers.clear()
        self._queues.clear()
        self._pending = 0
        self._idle.set()

    def __len__(self) -> int:
        return len(self._queues)
