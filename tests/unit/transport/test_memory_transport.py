"""
Unit tests for the in-memory transport and its failure injection hooks.
"""

from __future__ import annotations

import pytest

from amqplink.transport.interface import Transport, TransportChannel, TransportConnection
from amqplink.transport.memory import InMemoryDelivery, InMemoryTransport

URL = "amqp://localhost/"


class TestConnection:
    @pytest.mark.asyncio
    async def test_satisfies_protocols(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        channel = await connection.open_channel()
        assert isinstance(transport, Transport)
        assert isinstance(connection, TransportConnection)
        assert isinstance(channel, TransportChannel)

    @pytest.mark.asyncio
    async def test_fail_connects(self, transport: InMemoryTransport) -> None:
        transport.fail_connects = 2
        for _ in range(2):
            with pytest.raises(ConnectionRefusedError):
                await transport.connect(URL)
        await transport.connect(URL)
        assert transport.connect_attempts == 3
        assert len(transport.connections) == 1

    @pytest.mark.asyncio
    async def test_simulated_loss_fires_close_once(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        channel = await connection.open_channel()
        seen: list[BaseException | None] = []
        connection.on_close(seen.append)

        transport.simulate_connection_loss()
        await connection.close()

        assert len(seen) == 1
        assert isinstance(seen[0], ConnectionResetError)
        assert channel.is_closed
        assert transport.current_connection is None

    @pytest.mark.asyncio
    async def test_clean_close_reports_none(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        seen: list[BaseException | None] = []
        connection.on_close(seen.append)
        await connection.close()
        assert seen == [None]

    def test_loss_without_connection(self, transport: InMemoryTransport) -> None:
        with pytest.raises(RuntimeError):
            transport.simulate_connection_loss()

    @pytest.mark.asyncio
    async def test_emit_error(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        seen: list[BaseException] = []
        connection.on_error(seen.append)
        error = RuntimeError("heartbeat missed")
        connection.emit_error(error)
        assert seen == [error]
        assert not connection.is_closed


class TestChannel:
    @pytest.mark.asyncio
    async def test_backlog_flushed_on_subscribe(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        channel = await connection.open_channel()
        await channel.publish("q", b"1")
        await channel.publish("q", b"2")
        assert list(transport.broker.backlog["q"]) == [b"1", b"2"]

        received: list[bytes] = []

        async def on_delivery(delivery: InMemoryDelivery | None) -> None:
            assert delivery is not None
            received.append(delivery.body)

        await channel.subscribe("q", on_delivery)
        await transport.broker.wait_idle()
        assert received == [b"1", b"2"]

    @pytest.mark.asyncio
    async def test_round_robin_between_consumers(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        channel = await connection.open_channel()
        first: list[bytes] = []
        second: list[bytes] = []

        async def to_first(delivery: InMemoryDelivery | None) -> None:
            first.append(delivery.body)  # type: ignore[union-attr]

        async def to_second(delivery: InMemoryDelivery | None) -> None:
            second.append(delivery.body)  # type: ignore[union-attr]

        await channel.subscribe("q", to_first)
        await channel.subscribe("q", to_second)
        for body in (b"a", b"b", b"c"):
            await channel.publish("q", body)
        await transport.broker.wait_idle()

        assert first == [b"a", b"c"]
        assert second == [b"b"]

    @pytest.mark.asyncio
    async def test_cancel_removes_consumer(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        channel = await connection.open_channel()

        async def ignore(delivery: InMemoryDelivery | None) -> None:
            return None

        tag = await channel.subscribe("q", ignore)
        assert transport.broker.consumer_count("q") == 1
        await channel.cancel(tag)
        assert transport.broker.consumer_count("q") == 0

    @pytest.mark.asyncio
    async def test_closed_channel_rejects_operations(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        channel = await connection.open_channel()
        await channel.close()

        with pytest.raises(ConnectionError):
            await channel.publish("q", b"x")
        with pytest.raises(ConnectionError):
            await channel.ack(InMemoryDelivery("q", b"x", 1))

    @pytest.mark.asyncio
    async def test_injected_failures(self, transport: InMemoryTransport) -> None:
        connection = await transport.connect(URL)
        transport.fail_channels = 1
        with pytest.raises(ConnectionError):
            await connection.open_channel()

        channel = await connection.open_channel()
        transport.fail_publishes = 1
        with pytest.raises(ConnectionError):
            await channel.publish("q", b"x")
        await channel.publish("q", b"x")
        assert transport.published == [("q", b"x")]

        transport.fail_closes = True
        with pytest.raises(ConnectionError):
            await channel.close()
