"""
Retrying publisher.

``send`` stamps the payload, serializes it once, then tries up to
``publish_max_attempts`` times to declare the topic queue and publish to it on
the channel currently held by the ConnectionManager. Failed attempts are
spaced by ``publish_retry_delay`` (1s, 2s, 4s... with the default base).

A missing channel mid-retry (the connection dropped and a reconnect is under
way) is retried with the same backoff as a broker-side failure, so a send
issued just before a short outage can still go through on the new channel.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from amqplink.backoff import publish_retry_delay
from amqplink.connection import ConnectionManager
from amqplink.exceptions import (
    NotConnectedError,
    PublishError,
    SerializationError,
    TransportError,
)
from amqplink.metrics import MetricsAggregator
from amqplink.observability import (
    ATTR_MESSAGE_SIZE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_PUBLISH_ATTEMPT,
    NullTracer,
    SpanKind,
    Tracer,
)
from amqplink.protocols import Sink
from amqplink.serialization import TIMESTAMP_FIELD, encode, stamp


@dataclass(frozen=True)
class PublishResult:
    """
    Outcome of a successful send.

    Attributes:
        topic: Queue the message was published to
        attempts: Attempts used, 1 when the first one succeeded
        size: Encoded body size in bytes
        timestamp: Value of the stamped ``timestamp`` field (epoch ms)
    """

    topic: str
    attempts: int
    size: int
    timestamp: int


class Publisher:
    """
    Serializes and publishes messages with retry.

    Args:
        connection: Manager providing the current channel
        metrics: Aggregator for sent/errors counts
        max_attempts: Attempt ceiling per send
        retry_base_delay: Base of the retry backoff, in seconds
        durable: Declare published-to queues as durable
        tracer: Tracer for producer spans
        logger: Sink for structured log records
    """

    def __init__(
        self,
        connection: ConnectionManager,
        metrics: MetricsAggregator,
        *,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        durable: bool = False,
        tracer: Tracer | None = None,
        logger: Sink | None = None,
    ) -> None:
        self._connection = connection
        self._metrics = metrics
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._durable = durable
        self._tracer: Tracer = tracer or NullTracer()
        self._logger: Sink = logger if logger is not None else logging.getLogger(__name__)

    async def send(self, topic: str, data: Mapping[str, Any]) -> PublishResult:
        """
        Publish ``data`` to ``topic``.

        The caller's mapping is not modified; a copy carrying the
        ``timestamp`` field is what goes on the wire.

        Raises:
            NotConnectedError: If not connected when called, or if shutdown
                begins while retrying
            SerializationError: If the payload cannot be encoded (not retried)
            PublishError: If every attempt failed; chained to the last error
        """
        if not self._connection.is_connected:
            error = NotConnectedError(topic=topic)
            self._logger.error(str(error), extra={"topic": topic})
            raise error

        message = stamp(data)
        try:
            body = encode(message)
        except (TypeError, ValueError) as e:
            self._metrics.record_error("serialize", topic)
            self._logger.error(
                "Failed to serialize message",
                extra={"topic": topic, "error": str(e), "error_type": type(e).__name__},
            )
            raise SerializationError(topic, str(e)) from e

        last_error: BaseException | None = None
        for attempt in range(self._max_attempts):
            if self._connection.is_shutdown:
                raise NotConnectedError("Client is shutting down", topic=topic)
            try:
                await self._publish_once(topic, body, attempt + 1)
            except Exception as e:
                last_error = e
                self._metrics.record_error("publish", topic)
                if attempt == self._max_attempts - 1:
                    break
                delay = publish_retry_delay(attempt, self._retry_base_delay)
                self._logger.warning(
                    "Publish failed, retrying",
                    extra={
                        "topic": topic,
                        "attempt": attempt + 1,
                        "max_attempts": self._max_attempts,
                        "delay_seconds": delay,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await asyncio.sleep(delay)
                continue

            self._metrics.record_sent(topic)
            self._logger.info("Message sent", extra={"topic": topic, "message_size": len(body)})
            return PublishResult(
                topic=topic,
                attempts=attempt + 1,
                size=len(body),
                timestamp=message[TIMESTAMP_FIELD],
            )

        assert last_error is not None
        self._logger.error(
            "Publish attempts exhausted",
            extra={
                "topic": topic,
                "attempts": self._max_attempts,
                "error": str(last_error),
                "error_type": type(last_error).__name__,
            },
        )
        raise PublishError(topic, self._max_attempts, last_error) from last_error

    async def _publish_once(self, topic: str, body: bytes, attempt: int) -> None:
        with self._tracer.span(
            "amqplink.publish",
            SpanKind.PRODUCER,
            {
                ATTR_MESSAGING_DESTINATION: topic,
                ATTR_MESSAGING_OPERATION: "publish",
                ATTR_MESSAGE_SIZE: len(body),
                ATTR_PUBLISH_ATTEMPT: attempt,
            },
        ):
            channel = self._connection.channel
            if channel is None or channel.is_closed:
                raise TransportError("AMQP channel is not open")
            await channel.declare_queue(topic, durable=self._durable)
            await channel.publish(topic, body)


__all__ = ["PublishResult", "Publisher"]
