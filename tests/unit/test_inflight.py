"""
Unit tests for InFlightTracker.
"""

import asyncio

import pytest

from amqplink.inflight import InFlightTracker


@pytest.fixture
def tracker() -> InFlightTracker:
    return InFlightTracker()


class TestTracking:
    """Tests for adding and removing delivery ids."""

    def test_empty_initially(self, tracker: InFlightTracker) -> None:
        assert tracker.count == 0
        assert tracker.is_empty
        assert tracker.snapshot() == frozenset()

    def test_ids_are_unique_and_carry_topic(self, tracker: InFlightTracker) -> None:
        ids = {tracker.next_id("orders") for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("orders:") for i in ids)

    def test_track_adds_and_removes(self, tracker: InFlightTracker) -> None:
        with tracker.track("t") as delivery_id:
            assert tracker.count == 1
            assert delivery_id in tracker.snapshot()
        assert tracker.is_empty

    def test_track_removes_on_exception(self, tracker: InFlightTracker) -> None:
        with pytest.raises(RuntimeError):
            with tracker.track("t"):
                raise RuntimeError("handler blew up")
        assert tracker.count == 0

    def test_discard_is_idempotent(self, tracker: InFlightTracker) -> None:
        tracker.add("t:1")
        tracker.discard("t:1")
        tracker.discard("t:1")
        assert tracker.count == 0

    @pytest.mark.asyncio
    async def test_returns_to_zero_after_mixed_outcomes(self, tracker: InFlightTracker) -> None:
        """Size goes back to zero whatever mix of success and failure ran."""

        async def work(n: int) -> None:
            with tracker.track("t"):
                await asyncio.sleep(0.001 * (n % 3))
                if n % 2:
                    raise ValueError(n)

        results = await asyncio.gather(*(work(n) for n in range(20)), return_exceptions=True)
        assert sum(isinstance(r, ValueError) for r in results) == 10
        assert tracker.count == 0


class TestWaitEmpty:
    """Tests for wait_empty polling."""

    @pytest.mark.asyncio
    async def test_returns_immediately_when_empty(self, tracker: InFlightTracker) -> None:
        assert await tracker.wait_empty(timeout=0) is True

    @pytest.mark.asyncio
    async def test_returns_true_once_drained(self, tracker: InFlightTracker) -> None:
        tracker.add("t:1")

        async def finish() -> None:
            await asyncio.sleep(0.03)
            tracker.discard("t:1")

        task = asyncio.create_task(finish())
        assert await tracker.wait_empty(timeout=1.0, poll_interval=0.01) is True
        await task

    @pytest.mark.asyncio
    async def test_returns_false_on_timeout(self, tracker: InFlightTracker) -> None:
        tracker.add("t:1")
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await tracker.wait_empty(timeout=0.05, poll_interval=0.01) is False
        assert loop.time() - started < 0.5
        assert tracker.count == 1
