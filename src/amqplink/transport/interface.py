"""
Transport protocols consumed by the amqplink core.

The core never speaks AMQP itself. A transport opens connections and channels,
declares queues, publishes bytes and delivers inbound messages to a callback.
Two implementations ship with the library:

- AioPikaTransport: RabbitMQ via aio-pika
- InMemoryTransport: in-process broker for tests and local development

Delivery callbacks receive ``None`` for broker-internal signals (for example a
consumer cancelled by the server); the core ignores those.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

# Called with the exception that closed the connection, or None on a clean close
CloseCallback = Callable[[BaseException | None], None]
# Called with a connection-level error that did not (yet) close the connection
ErrorCallback = Callable[[BaseException], None]
DeliveryCallback = Callable[["Delivery | None"], Awaitable[None]]


@runtime_checkable
class Delivery(Protocol):
    """One inbound message and its acknowledgement handle."""

    @property
    def body(self) -> bytes: ...

    @property
    def delivery_tag(self) -> Any: ...


@runtime_checkable
class TransportChannel(Protocol):
    """An open channel on a transport connection."""

    @property
    def is_closed(self) -> bool: ...

    async def declare_queue(self, name: str, *, durable: bool = False) -> None: ...

    async def publish(self, queue: str, body: bytes) -> None: ...

    async def subscribe(self, queue: str, callback: DeliveryCallback) -> str:
        """Register ``callback`` for ``queue`` and return the consumer tag."""
        ...

    async def cancel(self, consumer_tag: str) -> None: ...

    async def ack(self, delivery: Delivery) -> None: ...

    async def reject(self, delivery: Delivery) -> None:
        """Reject without requeue."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class TransportConnection(Protocol):
    """An open connection to a broker."""

    @property
    def is_closed(self) -> bool: ...

    async def open_channel(self) -> TransportChannel: ...

    def on_close(self, callback: CloseCallback) -> None: ...

    def on_error(self, callback: ErrorCallback) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    """Factory for broker connections."""

    async def connect(self, url: str) -> TransportConnection: ...


__all__ = [
    "CloseCallback",
    "Delivery",
    "DeliveryCallback",
    "ErrorCallback",
    "Transport",
    "TransportChannel",
    "TransportConnection",
]
