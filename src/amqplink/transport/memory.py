"""In-memory transport implementation.

This module provides an in-process broker that satisfies the transport
protocols. It is suitable for tests, local development and single-process
deployments where RabbitMQ is not available.

Failure injection hooks make reconnect and retry paths reproducible:

    >>> transport = InMemoryTransport()
    >>> transport.fail_connects = 3          # next three connects raise
    >>> transport.fail_publishes = 1         # next publish raises
    >>> transport.simulate_connection_loss() # fire a close event on the live connection

Deliveries run as independent asyncio tasks, one per message, as aio-pika does.
Use ``await transport.broker.wait_idle()`` to wait for them in tests.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from amqplink.transport.interface import (
    CloseCallback,
    Delivery,
    DeliveryCallback,
    ErrorCallback,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InMemoryDelivery:
    """A message handed to a consumer callback."""

    queue: str
    body: bytes
    delivery_tag: int


@dataclass
class _Consumer:
    tag: str
    queue: str
    callback: DeliveryCallback
    channel: InMemoryChannel


@dataclass
class InMemoryBroker:
    """
    Shared broker state: queues, consumers and acknowledgement bookkeeping.

    Attributes:
        declared: Queue name -> durable flag of the last declaration
        backlog: Messages published while a queue had no consumer
        acked: Delivery tags acknowledged, in order
        rejected: Delivery tags rejected, in order
        subscribe_calls: Queue names in the order subscriptions were created
    """

    declared: dict[str, bool] = field(default_factory=dict)
    backlog: dict[str, deque[bytes]] = field(default_factory=lambda: defaultdict(deque))
    acked: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)
    subscribe_calls: list[str] = field(default_factory=list)
    _consumers: dict[str, list[_Consumer]] = field(default_factory=lambda: defaultdict(list))
    _round_robin: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _tags: Any = field(default_factory=lambda: itertools.count(1))
    _consumer_tags: Any = field(default_factory=lambda: itertools.count(1))
    _tasks: set[asyncio.Task[None]] = field(default_factory=set)

    def consumer_count(self, queue: str) -> int:
        """Number of active consumers on ``queue``."""
        return len(self._consumers.get(queue, []))

    def add_consumer(self, queue: str, callback: DeliveryCallback, channel: InMemoryChannel) -> str:
        tag = f"ctag-{next(self._consumer_tags)}"
        self._consumers[queue].append(_Consumer(tag, queue, callback, channel))
        self.subscribe_calls.append(queue)
        # Flush messages that arrived before anyone was listening
        backlog = self.backlog.pop(queue, deque())
        while backlog:
            self.route(queue, backlog.popleft())
        return tag

    def remove_consumer(self, tag: str) -> None:
        for queue, consumers in self._consumers.items():
            self._consumers[queue] = [c for c in consumers if c.tag != tag]

    def remove_channel(self, channel: InMemoryChannel) -> None:
        for queue, consumers in self._consumers.items():
            self._consumers[queue] = [c for c in consumers if c.channel is not channel]

    def route(self, queue: str, body: bytes) -> None:
        """Hand ``body`` to the next consumer of ``queue`` or keep it in the backlog."""
        consumers = self._consumers.get(queue)
        if not consumers:
            self.backlog[queue].append(body)
            return
        index = self._round_robin[queue] % len(consumers)
        self._round_robin[queue] += 1
        delivery = InMemoryDelivery(queue=queue, body=body, delivery_tag=next(self._tags))
        self._spawn(consumers[index].callback(delivery))

    def deliver_none(self, queue: str) -> None:
        """Invoke every consumer of ``queue`` with ``None`` (broker-internal signal)."""
        for consumer in list(self._consumers.get(queue, [])):
            self._spawn(consumer.callback(None))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait until every delivery task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class InMemoryChannel:
    """TransportChannel backed by an InMemoryBroker."""

    def __init__(self, transport: InMemoryTransport, connection: InMemoryConnection) -> None:
        self._transport = transport
        self._connection = connection
        self._closed = False

    @property
    def broker(self) -> InMemoryBroker:
        return self._transport.broker

    @property
    def is_closed(self) -> bool:
        return self._closed or self._connection.is_closed

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise ConnectionError("Channel is closed")

    async def declare_queue(self, name: str, *, durable: bool = False) -> None:
        self._ensure_open()
        self.broker.declared[name] = durable

    async def publish(self, queue: str, body: bytes) -> None:
        self._ensure_open()
        if self._transport.fail_publishes > 0:
            self._transport.fail_publishes -= 1
            raise ConnectionError("Injected publish failure")
        self._transport.published.append((queue, body))
        self.broker.route(queue, body)

    async def subscribe(self, queue: str, callback: DeliveryCallback) -> str:
        self._ensure_open()
        if self._transport.fail_subscribes > 0:
            self._transport.fail_subscribes -= 1
            raise ConnectionError("Injected subscribe failure")
        return self.broker.add_consumer(queue, callback, self)

    async def cancel(self, consumer_tag: str) -> None:
        self.broker.remove_consumer(consumer_tag)

    async def ack(self, delivery: Delivery) -> None:
        self._ensure_open()
        self.broker.acked.append(delivery.delivery_tag)

    async def reject(self, delivery: Delivery) -> None:
        self._ensure_open()
        self.broker.rejected.append(delivery.delivery_tag)

    async def close(self) -> None:
        if self._transport.fail_closes:
            raise ConnectionError("Injected channel close failure")
        self._closed = True
        self.broker.remove_channel(self)


class InMemoryConnection:
    """TransportConnection backed by an InMemoryTransport."""

    def __init__(self, transport: InMemoryTransport) -> None:
        self._transport = transport
        self._closed = False
        self._close_callbacks: list[CloseCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self.channels: list[InMemoryChannel] = []

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def open_channel(self) -> InMemoryChannel:
        if self._closed:
            raise ConnectionError("Connection is closed")
        if self._transport.fail_channels > 0:
            self._transport.fail_channels -= 1
            raise ConnectionError("Injected channel open failure")
        channel = InMemoryChannel(self._transport, self)
        self.channels.append(channel)
        return channel

    def on_close(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    async def close(self) -> None:
        if self._transport.fail_closes:
            raise ConnectionError("Injected connection close failure")
        self._drop(None)

    def lose(self, error: BaseException | None = None) -> None:
        """Drop the connection as if the broker went away."""
        self._drop(error or ConnectionResetError("Connection lost"))

    def emit_error(self, error: BaseException) -> None:
        for callback in list(self._error_callbacks):
            callback(error)

    def _drop(self, error: BaseException | None) -> None:
        if self._closed:
            return
        self._closed = True
        for channel in self.channels:
            self._transport.broker.remove_channel(channel)
        for callback in list(self._close_callbacks):
            callback(error)


class InMemoryTransport:
    """
    Transport backed by an in-process broker.

    Attributes:
        broker: Shared broker state
        connect_attempts: Number of connect() calls so far
        connections: Every connection opened, in order
        published: (queue, body) pairs accepted by publish(), in order
        fail_connects: Number of upcoming connect() calls that raise
        fail_channels: Number of upcoming open_channel() calls that raise
        fail_publishes: Number of upcoming publish() calls that raise
        fail_subscribes: Number of upcoming subscribe() calls that raise
        fail_closes: When True, channel and connection close() raise
    """

    def __init__(self, broker: InMemoryBroker | None = None) -> None:
        self.broker = broker or InMemoryBroker()
        self.connect_attempts = 0
        self.connections: list[InMemoryConnection] = []
        self.published: list[tuple[str, bytes]] = []
        self.fail_connects = 0
        self.fail_channels = 0
        self.fail_publishes = 0
        self.fail_subscribes = 0
        self.fail_closes = False

    async def connect(self, url: str) -> InMemoryConnection:
        self.connect_attempts += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionRefusedError(f"Injected connect failure for {url}")
        connection = InMemoryConnection(self)
        self.connections.append(connection)
        return connection

    @property
    def current_connection(self) -> InMemoryConnection | None:
        """The most recent connection if it is still open."""
        if self.connections and not self.connections[-1].is_closed:
            return self.connections[-1]
        return None

    def simulate_connection_loss(self, error: BaseException | None = None) -> None:
        """Fire a close event on the live connection."""
        connection = self.current_connection
        if connection is None:
            raise RuntimeError("No open connection to drop")
        logger.debug("Simulating connection loss")
        connection.lose(error)


__all__ = [
    "InMemoryBroker",
    "InMemoryChannel",
    "InMemoryConnection",
    "InMemoryDelivery",
    "InMemoryTransport",
]
