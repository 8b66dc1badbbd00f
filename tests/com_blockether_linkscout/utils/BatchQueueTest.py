"""
Tests for BatchQueue gating, ordering and cancellation, and for the clocks.
"""

from typing import List
from unittest.mock import AsyncMock

import anyio
import pytest

from com_blockether_linkscout.utils.BatchQueue import BatchQueue
from com_blockether_linkscout.utils.Clock import Clock, ManualClock, SystemClock


class TestBatchQueue:
    """Test suite for BatchQueue."""

    @pytest.fixture
    def clock(self) -> ManualClock:
        return ManualClock(start=0.0)

    @pytest.mark.anyio
    async def test_empty_queue(self, clock: ManualClock) -> None:
        """Test draining nothing."""
        handler = AsyncMock()

        result = await BatchQueue[str, str](clock=clock).run([], handler)

        assert result.total == 0
        assert result.ordered() == []
        handler.assert_not_called()

    @pytest.mark.anyio
    async def test_results_keep_input_order(self, clock: ManualClock) -> None:
        """Test sequential processing in input order."""
        seen: List[str] = []

        async def handler(item: str) -> str:
            seen.append(item)
            return item.upper()

        result = await BatchQueue[str, str](clock=clock).run(["a", "b", "c"], handler)

        assert seen == ["a", "b", "c"]
        assert result.ordered() == ["A", "B", "C"]
        assert result.pending == 0
        assert result.cancelled is False

    @pytest.mark.anyio
    async def test_gate_is_awaited_before_every_item(self, clock: ManualClock) -> None:
        """Test that the gate runs once per dequeue."""
        gate = AsyncMock()

        async def handler(item: int) -> int:
            return item * 2

        result = await BatchQueue[int, int](gate=gate, clock=clock).run([1, 2, 3], handler)

        assert gate.await_count == 3
        assert result.ordered() == [2, 4, 6]

    @pytest.mark.anyio
    async def test_delay_between_items(self, clock: ManualClock) -> None:
        """Test the fixed pause between consecutive items of a worker."""

        async def handler(item: int) -> int:
            return item

        await BatchQueue[int, int](delay_seconds=0.5, clock=clock).run([1, 2, 3], handler)

        assert clock.sleeps == [0.5, 0.5]
        assert clock.now() == 1.0

    @pytest.mark.anyio
    async def test_on_result_called_as_results_arrive(self, clock: ManualClock) -> None:
        """Test the result callback."""
        received: List[tuple] = []

        async def handler(item: str) -> int:
            return len(item)

        await BatchQueue[str, int](clock=clock).run(["x", "yy"], handler, on_result=lambda i, r: received.append((i, r)))

        assert received == [(0, 1), (1, 2)]

    @pytest.mark.anyio
    async def test_cancellation_stops_dequeuing(self, clock: ManualClock) -> None:
        """Test that items after cancellation stay pending and in-flight results are discarded."""
        event = anyio.Event()
        handled: List[int] = []

        async def handler(item: int) -> int:
            handled.append(item)
            if item == 2:
                event.set()
            return item

        result = await BatchQueue[int, int](clock=clock, cancel_event=event).run([1, 2, 3, 4], handler)

        assert handled == [1, 2]
        assert result.results == {0: 1}
        assert result.discarded == [1]
        assert result.pending == 2
        assert result.cancelled is True

    @pytest.mark.anyio
    async def test_parallel_workers(self, clock: ManualClock) -> None:
        """Test that several workers drain the queue concurrently."""
        active = 0
        peak = 0

        async def handler(item: int) -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await anyio.sleep(0.01)
            active -= 1
            return item

        result = await BatchQueue[int, int](workers=3, clock=clock).run(list(range(9)), handler)

        assert result.ordered() == list(range(9))
        assert peak == 3

    def test_invalid_worker_count(self) -> None:
        """Test constructor validation."""
        with pytest.raises(ValueError):
            BatchQueue[int, int](workers=0)


class TestClocks:
    """Test suite for the clock implementations."""

    @pytest.mark.anyio
    async def test_manual_clock_sleep_advances_time(self) -> None:
        """Test virtual sleeping."""
        clock = ManualClock(start=10.0)

        await clock.sleep(2.5)
        await clock.sleep(-1)

        assert clock.now() == 12.5
        assert clock.sleeps == [2.5, 0.0]

    def test_manual_clock_never_goes_backwards(self) -> None:
        """Test advance validation."""
        with pytest.raises(ValueError):
            ManualClock().advance(-1)

    def test_clocks_implement_protocol(self) -> None:
        """Test the Clock protocol."""
        assert isinstance(ManualClock(), Clock)
        assert isinstance(SystemClock(), Clock)

    @pytest.mark.anyio
    async def test_system_clock(self) -> None:
        """Test the real clock moves forward."""
        clock = SystemClock()
        before = clock.now()

        await clock.sleep(0.01)

        assert clock.now() > before
