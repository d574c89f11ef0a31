"""
Transports for amqplink.

- AioPikaTransport: RabbitMQ over aio-pika (production)
- InMemoryTransport: in-process broker (tests, local development)
"""

from amqplink.transport.interface import (
    Delivery,
    DeliveryCallback,
    Transport,
    TransportChannel,
    TransportConnection,
)
from amqplink.transport.memory import (
    InMemoryBroker,
    InMemoryDelivery,
    InMemoryTransport,
)
from amqplink.transport.rabbitmq import AioPikaTransport, sanitize_url

__all__ = [
    "AioPikaTransport",
    "Delivery",
    "DeliveryCallback",
    "InMemoryBroker",
    "InMemoryDelivery",
    "InMemoryTransport",
    "Transport",
    "TransportChannel",
    "TransportConnection",
    "sanitize_url",
]
