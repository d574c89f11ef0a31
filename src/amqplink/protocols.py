"""
Canonical protocol definitions for the amqplink library.

Protocols:
- Sink: Leveled structured logger accepted by every component
- MessageHandler: Consumer callback, sync or async, receiving the decoded payload

Any ``logging.Logger`` or ``logging.LoggerAdapter`` satisfies Sink. Structured
fields travel in ``extra``; messages stay short keys.

Example:
    >>> import logging
    >>> sink: Sink = logging.getLogger("my-service.amqp")
    >>> sink.info("Message sent", extra={"topic": "user.created"})
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

# Handlers receive the decoded JSON object. A coroutine result is awaited.
MessageHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]


@runtime_checkable
class Sink(Protocol):
    """
    Protocol for the logging capability used by the client.

    The five levels map to the standard logging levels; ``critical`` is the
    "fatal" level and is used only for reconnect exhaustion.
    """

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


__all__ = ["MessageHandler", "Sink"]
