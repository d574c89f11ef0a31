"""
Consumer registry and per-delivery dispatch pipeline.

The registry keeps one handler per topic. While the connection is up, every
bound topic has exactly one active subscription on the current channel; the
ConnectionManager calls ``resubscribe_all`` after every successful connect.

Each delivery runs as its own task (the transport spawns one per message) and
goes through the same pipeline:

1. ``None`` deliveries are broker-internal signals and are ignored
2. A delivery id is allocated and tracked, ``received`` is counted
3. The body is decoded as a UTF-8 JSON object
4. The handler is invoked and awaited
5. Success: ack, count ``processed`` and add the handler duration.
   Failure (decode included): count ``errors`` and reject without requeue
6. The delivery id leaves the in-flight set, whatever happened above
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from amqplink.connection import ConnectionManager
from amqplink.exceptions import DecodeError, HandlerError, TransportError
from amqplink.inflight import InFlightTracker
from amqplink.metrics import MetricsAggregator
from amqplink.observability import (
    ATTR_DELIVERY_ID,
    ATTR_MESSAGE_SIZE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    NullTracer,
    SpanKind,
    Tracer,
    mark_error,
)
from amqplink.protocols import MessageHandler, Sink
from amqplink.serialization import decode
from amqplink.transport.interface import Delivery, DeliveryCallback, TransportChannel


def get_handler_name(handler: Any) -> str:
    """Descriptive name of a handler for log records."""
    if hasattr(handler, "__qualname__"):
        return str(handler.__qualname__)
    if hasattr(handler, "__class__"):
        return str(handler.__class__.__name__)
    return repr(handler)


class Binding:
    """
    A topic's handler, normalized to an awaitable call.

    Sync handlers are called directly; if they hand back a coroutine it is
    awaited, so ``lambda msg: some_async(msg)`` works as expected.
    """

    def __init__(self, topic: str, handler: MessageHandler) -> None:
        if not callable(handler):
            raise TypeError(f"Handler must be callable, got {type(handler).__name__}")
        self.topic = topic
        self.handler = handler
        self.name = get_handler_name(handler)

    async def invoke(self, payload: dict[str, Any]) -> Any:
        result = self.handler(payload)
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            return await result
        return result

    def __repr__(self) -> str:
        return f"Binding({self.topic!r}, {self.name})"


class ConsumerRegistry:
    """
    Topic to handler bindings and their subscriptions.

    Args:
        connection: Manager providing the current channel
        tracker: In-flight set shared with graceful shutdown
        metrics: Aggregator for received/processed/errors counts
        tracer: Tracer for consumer spans
        logger: Sink for structured log records
        durable: Declare consumed queues as durable
    """

    def __init__(
        self,
        connection: ConnectionManager,
        tracker: InFlightTracker,
        metrics: MetricsAggregator,
        *,
        tracer: Tracer | None = None,
        logger: Sink | None = None,
        durable: bool = False,
    ) -> None:
        self._connection = connection
        self._tracker = tracker
        self._metrics = metrics
        self._tracer: Tracer = tracer or NullTracer()
        self._logger: Sink = logger if logger is not None else logging.getLogger(__name__)
        self._durable = durable

        self._bindings: dict[str, Binding] = {}
        # topic -> (channel, consumer tag) for subscriptions on the live channel
        self._active: dict[str, tuple[TransportChannel, str]] = {}
        self._lock = asyncio.Lock()

    @property
    def topics(self) -> list[str]:
        """Bound topics in registration order."""
        return list(self._bindings)

    def get_binding(self, topic: str) -> Binding | None:
        return self._bindings.get(topic)

    def is_subscribed(self, topic: str) -> bool:
        """Whether ``topic`` has a subscription on the current channel."""
        active = self._active.get(topic)
        return active is not None and active[0] is self._connection.channel

    @property
    def subscription_count(self) -> int:
        return sum(1 for topic in self._active if self.is_subscribed(topic))

    # =========================================================================
    # Binding and subscriptions
    # =========================================================================

    def register(self, topic: str, handler: MessageHandler) -> Binding:
        """Store the binding without subscribing; the last one for a topic wins."""
        binding = Binding(topic, handler)
        replaced = topic in self._bindings
        self._bindings[topic] = binding
        self._logger.info(
            "Handler bound",
            extra={"topic": topic, "handler": binding.name, "replaced": replaced},
        )
        return binding

    async def bind(self, topic: str, handler: MessageHandler) -> None:
        """
        Bind ``handler`` to ``topic``, replacing any previous handler.

        While connected, subscribes right away unless the topic already has
        a subscription on the current channel; the existing subscription then
        dispatches to the new handler.

        Raises:
            TypeError: If handler is not callable
            TransportError: If subscribing on the live channel fails. The
                binding is kept and retried on the next connect.
        """
        self.register(topic, handler)
        if not self._connection.is_connected:
            return

        async with self._lock:
            # A reconnect may have swapped the channel while waiting for the lock
            channel = self._connection.channel
            if channel is None or not self._connection.is_connected:
                return
            if self.is_subscribed(topic):
                return
            try:
                await self._subscribe(channel, topic)
            except Exception as e:
                self._metrics.record_error("subscribe", topic)
                self._logger.error(
                    "Failed to subscribe",
                    exc_info=True,
                    extra={"topic": topic, "error": str(e), "error_type": type(e).__name__},
                )
                raise TransportError(f"Failed to subscribe to {topic!r}: {e}") from e

    async def resubscribe_all(self, channel: TransportChannel) -> None:
        """
        Subscribe every bound topic on a freshly opened channel.

        Raises:
            Exception: The first subscribe failure; the ConnectionManager
                treats it as a failed connect attempt
        """
        async with self._lock:
            self._active.clear()
            for topic in list(self._bindings):
                await self._subscribe(channel, topic)
            if self._bindings:
                self._logger.info(
                    "Subscriptions established",
                    extra={"topics": list(self._bindings), "count": len(self._bindings)},
                )

    def forget_subscriptions(self) -> None:
        """Drop subscription bookkeeping after the channel went away."""
        self._active.clear()

    async def _subscribe(self, channel: TransportChannel, topic: str) -> None:
        await channel.declare_queue(topic, durable=self._durable)
        consumer_tag = await channel.subscribe(topic, self._make_callback(channel, topic))
        self._active[topic] = (channel, consumer_tag)
        self._logger.debug("Subscribed", extra={"topic": topic, "consumer_tag": consumer_tag})

    def _make_callback(self, channel: TransportChannel, topic: str) -> DeliveryCallback:
        async def on_delivery(delivery: Delivery | None) -> None:
            await self.dispatch(channel, topic, delivery)

        return on_delivery

    # =========================================================================
    # Dispatch pipeline
    # =========================================================================

    async def dispatch(
        self,
        channel: TransportChannel,
        topic: str,
        delivery: Delivery | None,
    ) -> None:
        """Run one delivery through decode, handle and ack/reject."""
        if delivery is None:
            self._logger.debug("Ignoring empty delivery", extra={"topic": topic})
            return

        with self._tracker.track(topic) as delivery_id:
            self._metrics.record_received(topic)
            with self._tracer.span(
                "amqplink.consume",
                SpanKind.CONSUMER,
                {
                    ATTR_MESSAGING_DESTINATION: topic,
                    ATTR_MESSAGING_OPERATION: "process",
                    ATTR_DELIVERY_ID: delivery_id,
                    ATTR_MESSAGE_SIZE: len(delivery.body),
                },
            ) as span:
                started = time.monotonic()
                try:
                    payload = self._decode(topic, delivery_id, delivery.body)
                    await self._handle(topic, delivery_id, payload)
                except HandlerError as e:
                    self._metrics.record_error("handler", topic)
                    mark_error(span, e)
                    self._logger.error(
                        "Failed to process message",
                        exc_info=True,
                        extra={
                            "topic": topic,
                            "delivery_id": delivery_id,
                            "error": str(e.__cause__ or e),
                            "error_type": type(e.__cause__ or e).__name__,
                        },
                    )
                    await self._settle(channel, delivery, topic, delivery_id, ack=False)
                    return

                duration_ms = int((time.monotonic() - started) * 1000)
                if await self._settle(channel, delivery, topic, delivery_id, ack=True):
                    self._metrics.record_processed(topic, duration_ms)
                    self._logger.debug(
                        "Message processed",
                        extra={"topic": topic, "delivery_id": delivery_id, "duration_ms": duration_ms},
                    )

    def _decode(self, topic: str, delivery_id: str, body: bytes) -> dict[str, Any]:
        try:
            return decode(body)
        except ValueError as e:
            raise DecodeError(topic, delivery_id, str(e)) from e

    async def _handle(self, topic: str, delivery_id: str, payload: dict[str, Any]) -> None:
        binding = self._bindings.get(topic)
        if binding is None:
            raise HandlerError(topic, delivery_id, "no handler bound")
        try:
            await binding.invoke(payload)
        except Exception as e:
            raise HandlerError(topic, delivery_id, str(e)) from e

    async def _settle(
        self,
        channel: TransportChannel,
        delivery: Delivery,
        topic: str,
        delivery_id: str,
        *,
        ack: bool,
    ) -> bool:
        """Ack or reject on the delivering channel; failures are counted and logged."""
        operation = "ack" if ack else "reject"
        try:
            if ack:
                await channel.ack(delivery)
            else:
                await channel.reject(delivery)
        except Exception as e:
            self._metrics.record_error(operation, topic)
            self._logger.error(
                f"Failed to {operation} delivery",
                extra={
                    "topic": topic,
                    "delivery_id": delivery_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return False
        return True


__all__ = ["Binding", "ConsumerRegistry", "get_handler_name"]
