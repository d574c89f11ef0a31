"""
Graceful shutdown result and process-signal wiring.

The client itself never touches process-wide signal state. Process entry
code that wants SIGTERM/SIGINT/SIGHUP to drain the client registers a
ShutdownHook once:

    >>> hook = ShutdownHook(client, timeout=10.0)
    >>> hook.register_signals()
    >>> await hook.wait()          # returns after the drain finished
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGINT", "SIGHUP") if hasattr(signal, name)
)


@dataclass(frozen=True)
class ShutdownResult:
    """
    Result of a graceful shutdown.

    Attributes:
        duration_seconds: Time from the call to the end of teardown
        drained: True if the in-flight set emptied within the timeout
        in_flight_at_start: Deliveries in flight when shutdown began
        not_drained: Deliveries still in flight when the timeout elapsed
        timeout_seconds: Drain window that was applied
    """

    duration_seconds: float
    drained: bool
    in_flight_at_start: int
    not_drained: int
    timeout_seconds: float

    @property
    def forced(self) -> bool:
        return not self.drained

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "duration_seconds": self.duration_seconds,
            "drained": self.drained,
            "in_flight_at_start": self.in_flight_at_start,
            "not_drained": self.not_drained,
            "timeout_seconds": self.timeout_seconds,
        }


class GracefullyClosable(Protocol):
    async def graceful_shutdown(self, timeout: float | None = None) -> ShutdownResult: ...


class ShutdownHook:
    """
    Runs ``graceful_shutdown`` once when a termination signal arrives.

    Args:
        client: Anything with ``graceful_shutdown(timeout)``
        timeout: Drain window passed to graceful_shutdown; None uses the
            client's configured default
        on_exit: Called with the result after shutdown, e.g. to stop the
            application's main loop
    """

    def __init__(
        self,
        client: GracefullyClosable,
        *,
        timeout: float | None = None,
        on_exit: Callable[[ShutdownResult], Awaitable[None] | None] | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._on_exit = on_exit
        self._registered: list[signal.Signals] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[ShutdownResult] | None = None
        self._done = asyncio.Event()
        self._result: ShutdownResult | None = None

    @property
    def triggered(self) -> bool:
        return self._task is not None

    @property
    def result(self) -> ShutdownResult | None:
        return self._result

    def register_signals(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS,
    ) -> None:
        """
        Register handlers for termination signals on ``loop``.

        Args:
            loop: Event loop; defaults to the running loop
            signals: Signals to handle; SIGTERM, SIGINT and SIGHUP by default
        """
        if self._registered:
            logger.warning("Signal handlers already registered")
            return

        loop = loop or asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.trigger, sig)
                self._registered.append(sig)
                logger.debug("Registered signal handler", extra={"signal": sig.name})
            except NotImplementedError:
                # Windows event loops do not support add_signal_handler
                logger.warning(
                    "Signal handling not supported on this platform",
                    extra={"signal": sig.name},
                )
        self._loop = loop
        logger.info("Shutdown signal handlers registered")

    def unregister_signals(self) -> None:
        """Remove the handlers installed by ``register_signals``."""
        if self._loop is None:
            return
        for sig in self._registered:
            self._loop.remove_signal_handler(sig)
        self._registered.clear()
        self._loop = None

    def trigger(self, sig: signal.Signals | None = None) -> None:
        """Start the shutdown task; later calls are ignored."""
        if self._task is not None:
            logger.debug("Shutdown already in progress", extra={"signal": sig.name if sig else None})
            return
        logger.info("Shutdown signal received", extra={"signal": sig.name if sig else None})
        self._task = asyncio.get_running_loop().create_task(self._run(), name="amqplink-shutdown")

    async def _run(self) -> ShutdownResult:
        try:
            self._result = await self._client.graceful_shutdown(self._timeout)
            if self._on_exit is not None:
                outcome = self._on_exit(self._result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            return self._result
        finally:
            self._done.set()

    async def wait(self) -> ShutdownResult | None:
        """Wait until a triggered shutdown (and ``on_exit``) has finished."""
        await self._done.wait()
        if self._task is not None:
            return await self._task
        return self._result


__all__ = ["DEFAULT_SIGNALS", "ShutdownHook", "ShutdownResult"]
