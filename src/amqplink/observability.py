"""
Tracing for publish and consume operations.

Components receive a Tracer by composition. ``create_tracer`` returns an
OpenTelemetry-backed tracer when tracing is enabled and a NullTracer
otherwise; without a configured TracerProvider the OpenTelemetry API hands
out non-recording spans, so enabled tracing is safe in every environment.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("amqplink.publish", SpanKind.PRODUCER, {"messaging.destination.name": "t"}):
    ...     ...
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

ATTR_MESSAGING_SYSTEM = "messaging.system"
ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
ATTR_MESSAGING_OPERATION = "messaging.operation"
ATTR_MESSAGE_SIZE = "messaging.message.body.size"
ATTR_DELIVERY_ID = "amqplink.delivery_id"
ATTR_PUBLISH_ATTEMPT = "amqplink.publish.attempt"

MESSAGING_SYSTEM = "rabbitmq"


@runtime_checkable
class Tracer(Protocol):
    """Protocol for tracers injected into the publisher and consumer registry."""

    @property
    def enabled(self) -> bool: ...

    def span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Any:
        """Context manager yielding a Span, or None when tracing is off."""
        ...


class NullTracer:
    """Tracer that records nothing."""

    @property
    def enabled(self) -> bool:
        return False

    @contextmanager
    def span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[Span | None]:
        yield None


class OpenTelemetryTracer:
    """Tracer backed by the global OpenTelemetry TracerProvider."""

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    @property
    def enabled(self) -> bool:
        return True

    @contextmanager
    def span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[Span | None]:
        attrs = {ATTR_MESSAGING_SYSTEM: MESSAGING_SYSTEM, **(attributes or {})}
        with self._tracer.start_as_current_span(
            name,
            kind=kind,
            attributes=attrs,
            record_exception=True,
            set_status_on_exception=True,
        ) as span:
            yield span


def mark_error(span: Span | None, error: BaseException) -> None:
    """Record ``error`` on ``span`` for failures that are handled, not raised."""
    if span is None:
        return
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Create a tracer for a component.

    Args:
        name: Instrumentation scope name, usually ``__name__``
        enable_tracing: False returns a NullTracer
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "ATTR_DELIVERY_ID",
    "ATTR_MESSAGE_SIZE",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_PUBLISH_ATTEMPT",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKind",
    "Tracer",
    "create_tracer",
    "mark_error",
]
