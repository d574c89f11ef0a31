"""
Backoff schedules.

Two schedules are used and they are intentionally separate:

- Reconnect: ``base_delay * multiplier ** (attempt - 1)``, attempt counted
  from 1, parameters taken from ReconnectPolicy.
- Publish retry: ``2 ** attempt * base``, attempt counted from 0, i.e.
  1s, 2s, 4s... with the default base.

Example:
    >>> reconnect_delay(ReconnectPolicy(base_delay=1.0, multiplier=2.0), 3)
    4.0
    >>> publish_retry_delay(2)
    4.0
"""

from amqplink.config import ReconnectPolicy


def reconnect_delay(policy: ReconnectPolicy, attempt: int) -> float:
    """
    Delay in seconds before reconnect attempt ``attempt``.

    Args:
        policy: Reconnect policy supplying base delay and multiplier
        attempt: Reconnect attempt number, starting at 1

    Returns:
        ``policy.base_delay * policy.multiplier ** (attempt - 1)``

    Raises:
        ValueError: If attempt is less than 1
    """
    if attempt < 1:
        raise ValueError(f"reconnect attempt is counted from 1, got {attempt}")
    return float(policy.base_delay * policy.multiplier ** (attempt - 1))


def publish_retry_delay(attempt: int, base: float = 1.0) -> float:
    """
    Delay in seconds after failed publish attempt ``attempt``.

    Args:
        attempt: Zero-based index of the attempt that just failed
        base: Delay unit in seconds

    Returns:
        ``2 ** attempt * base``

    Raises:
        ValueError: If attempt is negative
    """
    if attempt < 0:
        raise ValueError(f"publish attempt is counted from 0, got {attempt}")
    return float(2**attempt * base)


__all__ = ["publish_retry_delay", "reconnect_delay"]
