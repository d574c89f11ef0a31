"""Library exceptions for the amqplink package."""

from __future__ import annotations


class AmqpLinkError(Exception):
    """Base exception for amqplink library."""

    pass


class ConfigurationError(AmqpLinkError, ValueError):
    """Raised when the client is constructed with invalid arguments."""

    pass


class NotConnectedError(AmqpLinkError):
    """Raised when an operation needs an open channel and there is none."""

    def __init__(self, message: str | None = None, topic: str | None = None) -> None:
        self.topic = topic
        super().__init__(message or "AMQP channel is not open. Call start() before sending.")


class TransportError(AmqpLinkError):
    """Raised when connecting, opening a channel or publishing fails."""

    pass


class PublishError(TransportError):
    """Raised when a message could not be published after all retry attempts."""

    def __init__(self, topic: str, attempts: int, last_error: BaseException) -> None:
        self.topic = topic
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to publish to {topic!r} after {attempts} attempt(s): {last_error}"
        )


class HandlerError(AmqpLinkError):
    """Raised when a consumer handler fails for a single delivery."""

    def __init__(self, topic: str, delivery_id: str, message: str) -> None:
        self.topic = topic
        self.delivery_id = delivery_id
        super().__init__(f"Handler for {topic!r} failed on delivery {delivery_id}: {message}")


class DecodeError(HandlerError):
    """Raised when a delivery body is not a UTF-8 JSON object."""

    pass


class SerializationError(AmqpLinkError):
    """Raised when an outgoing payload cannot be encoded."""

    def __init__(self, topic: str, message: str) -> None:
        self.topic = topic
        super().__init__(f"Serialization error for {topic!r}: {message}")


class ReconnectExhaustedError(AmqpLinkError):
    """
    Raised (and reported) when the reconnect ceiling has been reached.

    This is the only unrecoverable condition: no further automatic attempts
    are made until ``start()`` is called again.
    """

    def __init__(self, max_attempts: int) -> None:
        self.max_attempts = max_attempts
        super().__init__(f"Gave up reconnecting after {max_attempts} attempt(s)")


class InvalidStateTransitionError(AmqpLinkError):
    """Raised on a connection state transition outside the allowed table."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid connection state transition: {from_state} -> {to_state}")


__all__ = [
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
