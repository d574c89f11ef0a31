"""
Basic Usage Example

This example walks through the client lifecycle:
- Creating a client from discrete connection parameters
- Binding handlers to topics
- Sending messages
- Reading metrics and the health check
- Graceful shutdown, either on a timer or on SIGTERM/SIGINT

Set AMQPLINK_URL to talk to a real RabbitMQ broker; without it the example
runs against the in-memory transport.

Run with: python examples/basic_usage.py
"""

import asyncio
import logging
import os
import random
from typing import Any

from amqplink import (
    AmqpClient,
    ClientConfig,
    ConnectionParams,
    InMemoryTransport,
    ReconnectPolicy,
    ShutdownHook,
)

# =============================================================================
# Step 1: Define Handlers
# =============================================================================
# Handlers receive the decoded JSON object. Sync and async handlers both work;
# raising rejects the delivery without requeue.


async def on_user_created(data: dict[str, Any]) -> None:
    print(f"   New user: {data}")
    # Simulate slow processing so shutdown has something to drain
    await asyncio.sleep(1.0)


def on_order_placed(data: dict[str, Any]) -> None:
    print(f"   New order: {data}")
    if random.random() < 0.3:
        raise RuntimeError("Temporary order processing error")


def print_metrics(client: AmqpClient) -> None:
    metrics = client.get_metrics()
    print(
        f"   sent={metrics.sent} received={metrics.received} "
        f"processed={metrics.processed} errors={metrics.errors} "
        f"avg={metrics.avg_processing_time_ms}ms uptime={metrics.uptime_ms // 1000}s "
        f"reconnections={metrics.reconnections}"
    )
    health = client.get_health_check()
    print(
        f"   health={health.status} connected={health.is_connected} "
        f"pending={health.pending_messages}"
    )


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    print("=" * 60)
    print("amqplink basic usage")
    print("=" * 60)

    # =========================================================================
    # Step 2: Create the Client
    # =========================================================================
    url = os.environ.get("AMQPLINK_URL")
    config = ClientConfig(
        reconnect=ReconnectPolicy(max_attempts=10, base_delay=2.0, multiplier=1.5),
    )
    if url:
        client = AmqpClient(url, config=config)
    else:
        client = AmqpClient(
            ConnectionParams(host="localhost", port=5672),
            config=config,
            transport=InMemoryTransport(),
        )
    print(f"\n1. Client created for {client.url}")

    # =========================================================================
    # Step 3: Bind Handlers and Connect
    # =========================================================================
    await client.listen("user.created", on_user_created)
    await client.listen("order.placed", on_order_placed)
    await client.start()
    print(f"2. Connected: {client.is_connected}, topics: {client.topics}")

    hook = ShutdownHook(client, timeout=15.0)
    hook.register_signals()

    # =========================================================================
    # Step 4: Send Messages
    # =========================================================================
    print("\n3. Sending test messages")
    await client.send("user.created", {"id": 123, "name": "Eugene", "email": "eugene@example.com"})
    await client.send("order.placed", {"orderId": 456, "userId": 123, "amount": 99.99})
    for i in range(3):
        await client.send("user.created", {"id": 1000 + i, "name": f"User{i}"})

    await asyncio.sleep(0.5)
    print("\n4. Metrics while handlers run")
    print_metrics(client)

    # =========================================================================
    # Step 5: Graceful Shutdown
    # =========================================================================
    # A signal triggers the hook; otherwise shut down after a short demo.
    try:
        await asyncio.wait_for(hook.wait(), timeout=5.0)
    except TimeoutError:
        print("\n5. Demonstrating graceful shutdown")
        hook.trigger()
        await hook.wait()
    finally:
        hook.unregister_signals()

    result = hook.result
    if result is not None:
        print(f"   drained={result.drained} duration={result.duration_seconds:.2f}s")
    print_metrics(client)

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
