"""
Metrics aggregation for the amqplink client.

MetricsAggregator keeps the counters behind ``get_metrics()`` and
``get_health_check()`` and mirrors every increment to OpenTelemetry
instruments. Without a configured MeterProvider the OpenTelemetry API is a
no-op, so the mirror costs nothing in applications that do not export metrics.

Metrics Exposed:
    - amqplink.messages.sent (Counter): Messages published
    - amqplink.messages.received (Counter): Deliveries received
    - amqplink.messages.processed (Counter): Deliveries acknowledged
    - amqplink.errors (Counter): Failed attempts of any kind
    - amqplink.reconnections (Counter): Reconnect attempts scheduled
    - amqplink.processing.duration (Histogram): Handler time in milliseconds

Example:
    >>> metrics = MetricsAggregator()
    >>> metrics.record_received("user.created")
    >>> metrics.record_processed("user.created", 12)
    >>> metrics.snapshot(pending_messages=0, is_connected=True).avg_processing_time_ms
    12
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from opentelemetry import metrics as otel_metrics

_meter: Any = None


def _get_meter() -> Any:
    """Get or create the module meter for the amqplink namespace."""
    global _meter
    if _meter is None:
        _meter = otel_metrics.get_meter("amqplink", version="1.0.0")
    return _meter


def reset_meter() -> None:
    """
    Reset the module meter.

    Useful for testing to pick up a freshly installed MeterProvider.
    """
    global _meter
    _meter = None


def _average(total_ms: int, processed: int) -> int:
    if processed == 0:
        return 0
    return round(total_ms / processed)


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    Point-in-time copy of the client counters.

    Attributes:
        sent: Messages published
        received: Deliveries received (null deliveries excluded)
        processed: Deliveries handled and acknowledged
        errors: Failed attempts (publish, handler, connect, close, transport errors)
        reconnections: Reconnect attempts scheduled
        total_processing_time_ms: Sum of successful handler durations
        last_reconnect_at: When the latest reconnect was scheduled
        start_time: When the client was created
        uptime_ms: Milliseconds since start_time
        avg_processing_time_ms: ``round(total / processed)``, 0 when nothing processed
        pending_messages: Deliveries in flight
        is_connected: Whether the connection is in the CONNECTED state
        reconnect_attempts: Current reconnect attempt counter
    """

    sent: int
    received: int
    processed: int
    errors: int
    reconnections: int
    total_processing_time_ms: int
    last_reconnect_at: datetime | None
    start_time: datetime
    uptime_ms: int
    avg_processing_time_ms: int
    pending_messages: int = 0
    is_connected: bool = False
    reconnect_attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sent": self.sent,
            "received": self.received,
            "processed": self.processed,
            "errors": self.errors,
            "reconnections": self.reconnections,
            "total_processing_time_ms": self.total_processing_time_ms,
            "last_reconnect_at": (
                self.last_reconnect_at.isoformat() if self.last_reconnect_at else None
            ),
            "start_time": self.start_time.isoformat(),
            "uptime_ms": self.uptime_ms,
            "avg_processing_time_ms": self.avg_processing_time_ms,
            "pending_messages": self.pending_messages,
            "is_connected": self.is_connected,
            "reconnect_attempts": self.reconnect_attempts,
        }


@dataclass(frozen=True)
class HealthCheck:
    """
    Health verdict for the client.

    ``status`` is "healthy" exactly when the connection is CONNECTED.

    Attributes:
        status: "healthy" or "unhealthy"
        timestamp: When the check was taken
        uptime_ms: Milliseconds since the client was created
        is_connected: Whether the connection is CONNECTED
        pending_messages: Deliveries in flight
        metrics: sent, received, processed, errors, avg_processing_time_ms
        state: Connection state name
        reconnect_exhausted: True once the reconnect ceiling was hit
    """

    status: str
    timestamp: datetime
    uptime_ms: int
    is_connected: bool
    pending_messages: int
    metrics: dict[str, int]
    state: str = "disconnected"
    reconnect_exhausted: bool = False

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "uptime_ms": self.uptime_ms,
            "is_connected": self.is_connected,
            "pending_messages": self.pending_messages,
            "metrics": dict(self.metrics),
            "state": self.state,
            "reconnect_exhausted": self.reconnect_exhausted,
        }


@dataclass
class MetricsAggregator:
    """
    Thread-safe counters for one client instance.

    Counters only ever grow; ``last_reconnect_at`` is overwritten. A new
    client instance is the only way to start from zero.

    Attributes:
        enable_metrics: Mirror increments to OpenTelemetry instruments
    """

    enable_metrics: bool = True
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _started_monotonic: float = field(default_factory=time.monotonic, init=False, repr=False)
    _sent: int = field(default=0, init=False, repr=False)
    _received: int = field(default=0, init=False, repr=False)
    _processed: int = field(default=0, init=False, repr=False)
    _errors: int = field(default=0, init=False, repr=False)
    _reconnections: int = field(default=0, init=False, repr=False)
    _total_processing_time_ms: int = field(default=0, init=False, repr=False)
    _last_reconnect_at: datetime | None = field(default=None, init=False, repr=False)
    _instruments: dict[str, Any] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize metric instruments."""
        if self.enable_metrics:
            meter = _get_meter()
            self._instruments = {
                "sent": meter.create_counter(
                    name="amqplink.messages.sent",
                    unit="messages",
                    description="Messages published",
                ),
                "received": meter.create_counter(
                    name="amqplink.messages.received",
                    unit="messages",
                    description="Deliveries received",
                ),
                "processed": meter.create_counter(
                    name="amqplink.messages.processed",
                    unit="messages",
                    description="Deliveries handled and acknowledged",
                ),
                "errors": meter.create_counter(
                    name="amqplink.errors",
                    unit="1",
                    description="Failed attempts",
                ),
                "reconnections": meter.create_counter(
                    name="amqplink.reconnections",
                    unit="1",
                    description="Reconnect attempts scheduled",
                ),
                "duration": meter.create_histogram(
                    name="amqplink.processing.duration",
                    unit="ms",
                    description="Handler processing duration in milliseconds",
                ),
            }

    def _emit(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        if self._instruments is not None:
            self._instruments[name].add(1, attributes or {})

    def record_sent(self, topic: str) -> None:
        with self._lock:
            self._sent += 1
        self._emit("sent", {"topic": topic})

    def record_received(self, topic: str) -> None:
        with self._lock:
            self._received += 1
        self._emit("received", {"topic": topic})

    def record_processed(self, topic: str, duration_ms: int) -> None:
        """Count a handled delivery and add its duration to the total."""
        duration_ms = max(0, int(duration_ms))
        with self._lock:
            self._processed += 1
            self._total_processing_time_ms += duration_ms
        self._emit("processed", {"topic": topic})
        if self._instruments is not None:
            self._instruments["duration"].record(duration_ms, {"topic": topic})

    def record_error(self, kind: str, topic: str | None = None) -> None:
        """
        Count one failed attempt.

        Args:
            kind: Where it failed, e.g. "publish", "handler", "connect"
            topic: Topic involved, if any
        """
        with self._lock:
            self._errors += 1
        attributes: dict[str, Any] = {"kind": kind}
        if topic is not None:
            attributes["topic"] = topic
        self._emit("errors", attributes)

    def record_reconnect(self) -> datetime:
        """Count a scheduled reconnect and stamp ``last_reconnect_at``."""
        now = datetime.now(UTC)
        with self._lock:
            self._reconnections += 1
            self._last_reconnect_at = now
        self._emit("reconnections")
        return now

    @property
    def uptime_ms(self) -> int:
        return int((time.monotonic() - self._started_monotonic) * 1000)

    @property
    def errors(self) -> int:
        return self._errors

    def snapshot(
        self,
        *,
        pending_messages: int = 0,
        is_connected: bool = False,
        reconnect_attempts: int = 0,
    ) -> MetricsSnapshot:
        """Copy the counters under the lock and derive uptime and average."""
        with self._lock:
            return MetricsSnapshot(
                sent=self._sent,
                received=self._received,
                processed=self._processed,
                errors=self._errors,
                reconnections=self._reconnections,
                total_processing_time_ms=self._total_processing_time_ms,
                last_reconnect_at=self._last_reconnect_at,
                start_time=self.start_time,
                uptime_ms=self.uptime_ms,
                avg_processing_time_ms=_average(self._total_processing_time_ms, self._processed),
                pending_messages=pending_messages,
                is_connected=is_connected,
                reconnect_attempts=reconnect_attempts,
            )

    def health_check(
        self,
        *,
        state: str,
        is_connected: bool,
        pending_messages: int,
        reconnect_exhausted: bool = False,
    ) -> HealthCheck:
        """Derive the health verdict; healthy exactly when connected."""
        snap = self.snapshot(pending_messages=pending_messages, is_connected=is_connected)
        return HealthCheck(
            status="healthy" if is_connected else "unhealthy",
            timestamp=datetime.now(UTC),
            uptime_ms=snap.uptime_ms,
            is_connected=is_connected,
            pending_messages=pending_messages,
            metrics={
                "sent": snap.sent,
                "received": snap.received,
                "processed": snap.processed,
                "errors": snap.errors,
                "avg_processing_time_ms": snap.avg_processing_time_ms,
            },
            state=state,
            reconnect_exhausted=reconnect_exhausted,
        )


__all__ = [
    "HealthCheck",
    "MetricsAggregator",
    "MetricsSnapshot",
    "reset_meter",
]
