"""Unit tests for ordered per-key lanes."""

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from ha_firestore_bridge.sync.lanes import OrderedLanes


class TestOrderedLanes:
    """Tests for per-key ordering and cross-key parallelism."""

    @pytest.mark.asyncio
    async def test_same_key_runs_in_submission_order(self) -> None:
        """Test that a slow first job does not let later jobs overtake it."""
        lanes = OrderedLanes("test")
        seen: list[int] = []

        def job(n: int, delay: float) -> Callable[[], Awaitable[None]]:
            async def run() -> None:
                await asyncio.sleep(delay)
                seen.append(n)

            return run

        lanes.submit("hub:switch.a", job(1, 0.02))
        lanes.submit("hub:switch.a", job(2, 0.0))
        lanes.submit("hub:switch.a", job(3, 0.01))
        await lanes.join()
        await lanes.close()

        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self) -> None:
        """Test that a blocked lane does not block another key."""
        lanes = OrderedLanes("test")
        release = asyncio.Event()
        done: list[str] = []

        async def blocked() -> None:
            await release.wait()
            done.append("a")

        async def free() -> None:
            done.append("b")
            release.set()

        lanes.submit("hub:switch.a", blocked)
        lanes.submit("hub:switch.b", free)
        await asyncio.wait_for(lanes.join(), timeout=1.0)
        await lanes.close()

        assert done == ["b", "a"]
        assert len(lanes) == 0

    @pytest.mark.asyncio
    async def test_lane_created_once_per_key(self) -> None:
        """Test lane bookkeeping."""
        lanes = OrderedLanes("test")

        async def noop() -> None:
            pass

        lanes.submit("doc:lamp1", noop)
        lanes.submit("doc:lamp1", noop)
        lanes.submit("doc:porch", noop)

        assert len(lanes) == 2
        await lanes.join()
        await lanes.close()

    @pytest.mark.asyncio
    async def test_failing_job_keeps_lane_alive(self) -> None:
        """Test that an exception is logged and later jobs still run."""
        lanes = OrderedLanes("test")
        seen: list[str] = []

        async def broken() -> None:
            raise RuntimeError("boom")

        async def fine() -> None:
            seen.append("ok")

        lanes.submit("hub:switch.a", broken)
        lanes.submit("hub:switch.a", fine)
        await lanes.join()
        await lanes.close()

        assert seen == ["ok"]

    @pytest.mark.asyncio
    async def test_join_without_work_returns(self) -> None:
        """Test that join on idle lanes does not block."""
        lanes = OrderedLanes("test")

        await asyncio.wait_for(lanes.join(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_submit_after_close_rejected(self) -> None:
        """Test that closed lanes refuse work."""
        lanes = OrderedLanes("test")
        await lanes.close()

        async def noop() -> None:
            pass

        with pytest.raises(RuntimeError):
            lanes.submit("hub:switch.a", noop)
