"""
amqplink - Resilient AMQP client for asyncio.

This library provides:
- A single managed connection/channel pair with automatic reconnect
- Topic-based publish (with retry) and subscribe (ack/reject per delivery)
- In-flight tracking and graceful shutdown
- Metrics snapshot and health check, mirrored to OpenTelemetry
- RabbitMQ (aio-pika) and in-memory transports
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("amqplink")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from amqplink.backoff import publish_retry_delay, reconnect_delay
from amqplink.client import AmqpClient
from amqplink.config import ClientConfig, ConnectionParams, ReconnectPolicy, resolve_url
from amqplink.connection import ConnectionManager
from amqplink.consumer import Binding, ConsumerRegistry
from amqplink.exceptions import (
    AmqpLinkError,
    ConfigurationError,
    DecodeError,
    HandlerError,
    InvalidStateTransitionError,
    NotConnectedError,
    PublishError,
    ReconnectExhaustedError,
    SerializationError,
    TransportError,
)
from amqplink.inflight import InFlightTracker
from amqplink.metrics import HealthCheck, MetricsAggregator, MetricsSnapshot
from amqplink.protocols import MessageHandler, Sink
from amqplink.publisher import PublishResult, Publisher
from amqplink.shutdown import ShutdownHook, ShutdownResult
from amqplink.state import ConnectionState
from amqplink.transport import AioPikaTransport, InMemoryBroker, InMemoryTransport

__all__ = [
    "__version__",
    # Client
    "AmqpClient",
    "ClientConfig",
    "ConnectionParams",
    "ReconnectPolicy",
    "resolve_url",
    # Components
    "Binding",
    "ConnectionManager",
    "ConnectionState",
    "ConsumerRegistry",
    "InFlightTracker",
    "MetricsAggregator",
    "Publisher",
    # Results
    "HealthCheck",
    "MetricsSnapshot",
    "PublishResult",
    "ShutdownHook",
    "ShutdownResult",
    # Backoff
    "publish_retry_delay",
    "reconnect_delay",
    # Protocols
    "MessageHandler",
    "Sink",
    # Transports
    "AioPikaTransport",
    "InMemoryBroker",
    "InMemoryTransport",
    # Exceptions
    "AmqpLinkError",
    "ConfigurationError",
    "DecodeError",
    "HandlerError",
    "InvalidStateTransitionError",
    "NotConnectedError",
    "PublishError",
    "ReconnectExhaustedError",
    "SerializationError",
    "TransportError",
]
