"""
Connection lifecycle management.

The ConnectionManager owns the single connection/channel pair, the
ConnectionState machine and the reconnect chain. It is the only writer of
state: every change goes through ``_transition()`` on the event loop thread,
and connect attempts are serialised by an ``asyncio.Lock``.

Reconnects are an explicit cancellable task. At most one is pending at a
time, so a close event arriving while a reconnect is already scheduled does
not start a second chain.

Example:
    >>> manager = ConnectionManager(transport, url, policy, metrics)
    >>> manager.add_connected_listener(registry.resubscribe_all)
    >>> await manager.start()
    >>> manager.state
    <ConnectionState.CONNECTED: 'connected'>
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from amqplink.backoff import reconnect_delay
from amqplink.config import ReconnectPolicy
from amqplink.exceptions import (
    InvalidStateTransitionError,
    ReconnectExhaustedError,
    TransportError,
)
from amqplink.metrics import MetricsAggregator
from amqplink.protocols import Sink
from amqplink.state import ConnectionState, is_valid_transition
from amqplink.transport.interface import Transport, TransportChannel, TransportConnection
from amqplink.transport.rabbitmq import sanitize_url

ConnectedListener = Callable[[TransportChannel], Awaitable[None]]
DisconnectedListener = Callable[[], None]
ExhaustedListener = Callable[[ReconnectExhaustedError], None]


class ConnectionManager:
    """
    Owns the broker connection and its lifecycle.

    Args:
        transport: Transport used to open connections
        url: Broker URL
        policy: Reconnect policy
        metrics: Aggregator receiving error and reconnect counts
        logger: Optional Sink; defaults to this module's logger
    """

    def __init__(
        self,
        transport: Transport,
        url: str,
        policy: ReconnectPolicy,
        metrics: MetricsAggregator,
        *,
        logger: Sink | None = None,
    ) -> None:
        self._transport = transport
        self._url = url
        self._policy = policy
        self._metrics = metrics
        self._logger: Sink = logger if logger is not None else logging.getLogger(__name__)

        self._state = ConnectionState.DISCONNECTED
        self._connection: TransportConnection | None = None
        self._channel: TransportChannel | None = None
        self._attempts = 0
        self._exhausted = False
        self._shutdown_requested = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

        self._connected_listeners: list[ConnectedListener] = []
        self._disconnected_listeners: list[DisconnectedListener] = []
        self._exhausted_listeners: list[ExhaustedListener] = []

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def channel(self) -> TransportChannel | None:
        """The current channel; read it fresh for every operation."""
        return self._channel

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_exhausted(self) -> bool:
        return self._exhausted

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_requested

    @property
    def url(self) -> str:
        return self._url

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_connected_listener(self, listener: ConnectedListener) -> None:
        """Run ``listener(channel)`` after every successful connect, in order."""
        self._connected_listeners.append(listener)

    def add_disconnected_listener(self, listener: DisconnectedListener) -> None:
        """Run ``listener()`` when the connection is lost."""
        self._disconnected_listeners.append(listener)

    def add_exhausted_listener(self, listener: ExhaustedListener) -> None:
        """Run ``listener(error)`` once when the reconnect ceiling is reached."""
        self._exhausted_listeners.append(listener)

    # =========================================================================
    # State machine
    # =========================================================================

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return
        if not is_valid_transition(self._state, new_state):
            raise InvalidStateTransitionError(self._state.value, new_state.value)
        self._logger.debug(
            "Connection state changed",
            extra={"from_state": self._state.value, "to_state": new_state.value},
        )
        self._state = new_state

    async def start(self) -> None:
        """
        Connect to the broker.

        A no-op with a warning while connecting, connected or shut down. A
        pending reconnect is cancelled and replaced by this attempt. A manual
        start after reconnect exhaustion begins a fresh reconnect chain.

        Raises:
            TransportError: If connecting fails and no reconnect will follow
                (policy disabled or shutdown requested)
        """
        if self._state is ConnectionState.DISCONNECTED and self.reconnect_pending:
            self.cancel_reconnect()
            await self.wait_reconnect_cancelled()
        if self._exhausted and self._state is ConnectionState.DISCONNECTED:
            self._logger.info(
                "Restarting after reconnect exhaustion",
                extra={"max_attempts": self._policy.max_attempts},
            )
            self._exhausted = False
            self._attempts = 0
        await self._connect()

    async def _connect(self) -> None:
        async with self._lock:
            if self._shutdown_requested or self._state is not ConnectionState.DISCONNECTED:
                self._logger.warning(
                    "Connect requested while already connected or shutting down",
                    extra={"state": self._state.value},
                )
                return

            self._transition(ConnectionState.CONNECTING)
            self._logger.info(
                "Connecting to AMQP broker",
                extra={"url": sanitize_url(self._url), "attempt": self._attempts + 1},
            )

            connection: TransportConnection | None = None
            try:
                connection = await self._transport.connect(self._url)
                channel = await connection.open_channel()

                if self._shutdown_requested:
                    # Shutdown arrived while connecting; do not resurrect
                    await self._close_quietly(channel, connection)
                    return

                self._connection = connection
                self._channel = channel
                connection.on_close(lambda exc, c=connection: self._on_connection_close(c, exc))
                connection.on_error(self._on_connection_error)
                self._transition(ConnectionState.CONNECTED)
                self._logger.info("Connected to AMQP broker", extra={"url": sanitize_url(self._url)})

                for listener in list(self._connected_listeners):
                    await listener(channel)
                self._attempts = 0
                self._exhausted = False

            except Exception as e:
                self._metrics.record_error("connect")
                self._logger.error(
                    "Failed to connect to AMQP broker",
                    exc_info=True,
                    extra={
                        "url": sanitize_url(self._url),
                        "attempt": self._attempts + 1,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                self._connection = None
                self._channel = None
                if connection is not None:
                    await self._close_quietly(None, connection)
                if self._state is not ConnectionState.SHUTTING_DOWN:
                    self._transition(ConnectionState.DISCONNECTED)

                if not self._shutdown_requested and self._policy.enabled:
                    self.schedule_reconnect()
                    return
                raise TransportError(f"Failed to connect to AMQP broker: {e}") from e

    def _on_connection_close(
        self,
        connection: TransportConnection,
        exception: BaseException | None,
    ) -> None:
        """Handle a close event fired by the transport."""
        if connection is not self._connection:
            self._logger.debug("Ignoring close event from a stale connection")
            return
        if self._shutdown_requested:
            return

        self._logger.warning(
            "AMQP connection closed",
            extra={
                "error": str(exception) if exception else None,
                "error_type": type(exception).__name__ if exception else None,
            },
        )
        self._connection = None
        self._channel = None
        if self._state is ConnectionState.CONNECTED:
            self._transition(ConnectionState.DISCONNECTED)

        for listener in list(self._disconnected_listeners):
            listener()

        if self._policy.enabled:
            self.schedule_reconnect()

    def _on_connection_error(self, exception: BaseException) -> None:
        """Handle a non-fatal error event: count and report."""
        self._metrics.record_error("connection")
        self._logger.error(
            "AMQP connection error",
            extra={"error": str(exception), "error_type": type(exception).__name__},
        )

    # =========================================================================
    # Reconnect chain
    # =========================================================================

    def schedule_reconnect(self) -> None:
        """
        Schedule the next reconnect attempt after its backoff delay.

        Does nothing if a reconnect is already pending or shutdown was
        requested. Reports ReconnectExhaustedError once when the ceiling is
        reached and stops.
        """
        if self._shutdown_requested:
            return
        if self.reconnect_pending:
            self._logger.debug("Reconnect already scheduled")
            return

        if self._attempts >= self._policy.max_attempts:
            if not self._exhausted:
                self._exhausted = True
                error = ReconnectExhaustedError(self._policy.max_attempts)
                self._logger.critical(
                    "Reconnect attempts exhausted",
                    extra={"max_attempts": self._policy.max_attempts, "error": str(error)},
                )
                for listener in list(self._exhausted_listeners):
                    listener(error)
            return

        self._attempts += 1
        self._metrics.record_reconnect()
        delay = reconnect_delay(self._policy, self._attempts)
        self._logger.info(
            "Reconnect scheduled",
            extra={
                "attempt": self._attempts,
                "max_attempts": self._policy.max_attempts,
                "delay_seconds": delay,
            },
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay),
            name=f"amqplink-reconnect-{self._attempts}",
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Clear before connecting so a failed attempt can schedule the next one
        self._reconnect_task = None
        try:
            await self._connect()
        except TransportError:
            # Only raised when no reconnect follows; already logged
            pass

    def cancel_reconnect(self) -> None:
        """Cancel the pending reconnect task, if any."""
        task = self._reconnect_task
        if task is not None and not task.done():
            task.cancel()
            self._logger.debug("Pending reconnect cancelled")

    # =========================================================================
    # Shutdown
    # =========================================================================

    def begin_shutdown(self) -> bool:
        """
        Enter SHUTTING_DOWN and cancel any pending reconnect.

        Returns:
            False if shutdown had already begun, True otherwise
        """
        if self._shutdown_requested:
            return False
        self._shutdown_requested = True
        self._transition(ConnectionState.SHUTTING_DOWN)
        self.cancel_reconnect()
        return True

    async def teardown(self) -> None:
        """Close channel and connection, reporting and swallowing close errors."""
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        if channel is not None or connection is not None:
            self._logger.info("Closing AMQP connection")
            await self._close_quietly(channel, connection)
            self._logger.info("AMQP connection closed")
        if self._state is not ConnectionState.DISCONNECTED:
            self._transition(ConnectionState.DISCONNECTED)

    async def wait_reconnect_cancelled(self) -> None:
        """Await a cancelled reconnect task so it does not outlive the manager."""
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _close_quietly(
        self,
        channel: TransportChannel | None,
        connection: TransportConnection | None,
    ) -> None:
        for resource, name in ((channel, "channel"), (connection, "connection")):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                self._metrics.record_error("close")
                self._logger.error(
                    f"Error closing AMQP {name}",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )


__all__ = ["ConnectionManager"]
