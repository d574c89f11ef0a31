"""
In-flight delivery tracking.

A delivery id is added when its callback starts and removed once its
ack/reject call and bookkeeping are done, on success and failure alike.
Graceful shutdown polls the tracker until it is empty or the drain window
closes.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class InFlightTracker:
    """
    Set of outstanding delivery ids.

    Example:
        >>> tracker = InFlightTracker()
        >>> with tracker.track("user.created") as delivery_id:
        ...     assert tracker.count == 1
        >>> tracker.count
        0
    """

    def __init__(self) -> None:
        self._pending: set[str] = set()
        self._counter = itertools.count(1)

    @property
    def count(self) -> int:
        """Number of deliveries currently in flight."""
        return len(self._pending)

    @property
    def is_empty(self) -> bool:
        return not self._pending

    def snapshot(self) -> frozenset[str]:
        """Ids of the deliveries currently in flight."""
        return frozenset(self._pending)

    def next_id(self, topic: str) -> str:
        """Allocate a delivery id unique for this tracker: ``{topic}:{n}``."""
        return f"{topic}:{next(self._counter)}"

    def add(self, delivery_id: str) -> None:
        self._pending.add(delivery_id)

    def discard(self, delivery_id: str) -> None:
        self._pending.discard(delivery_id)

    @contextmanager
    def track(self, topic: str) -> Iterator[str]:
        """Hold a fresh delivery id in the set for the duration of the block."""
        delivery_id = self.next_id(topic)
        self.add(delivery_id)
        try:
            yield delivery_id
        finally:
            self.discard(delivery_id)

    async def wait_empty(self, timeout: float, poll_interval: float = 0.1) -> bool:
        """
        Poll until no deliveries are in flight or ``timeout`` seconds pass.

        Returns:
            True if the set drained, False if the timeout elapsed first
        """
        deadline = time.monotonic() + timeout
        while self._pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            logger.debug("Waiting for in-flight deliveries", extra={"pending": self.count})
            await asyncio.sleep(min(poll_interval, remaining))
        return True


__all__ = ["InFlightTracker"]
