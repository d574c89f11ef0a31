"""
Connection lifecycle states.

The transition table mirrors the only paths the connection manager takes:

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (close event)
    any live state -> SHUTTING_DOWN -> DISCONNECTED (terminal teardown)
"""

from enum import Enum


class ConnectionState(Enum):
    """
    State of the broker connection owned by a ConnectionManager.

    Attributes:
        DISCONNECTED: No connection; a reconnect may be pending
        CONNECTING: A connect attempt is in progress
        CONNECTED: Connection and channel are open
        SHUTTING_DOWN: Shutdown requested, reconnects suppressed
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {
        ConnectionState.CONNECTING,
        ConnectionState.SHUTTING_DOWN,
    },
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.SHUTTING_DOWN,
    },
    ConnectionState.CONNECTED: {
        ConnectionState.DISCONNECTED,
        ConnectionState.SHUTTING_DOWN,
    },
    ConnectionState.SHUTTING_DOWN: {
        ConnectionState.DISCONNECTED,
    },
}


def is_valid_transition(from_state: ConnectionState, to_state: ConnectionState) -> bool:
    """Check whether ``from_state -> to_state`` is allowed."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


__all__ = [
    "ConnectionState",
    "VALID_TRANSITIONS",
    "is_valid_transition",
]
