"""
Unit tests for ShutdownHook and ShutdownResult.
"""

from __future__ import annotations

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from amqplink.shutdown import DEFAULT_SIGNALS, ShutdownHook, ShutdownResult


def make_result(drained: bool = True) -> ShutdownResult:
    return ShutdownResult(
        duration_seconds=0.1,
        drained=drained,
        in_flight_at_start=2,
        not_drained=0 if drained else 1,
        timeout_seconds=5.0,
    )


@pytest.fixture
def fake_client() -> MagicMock:
    client = MagicMock()
    client.graceful_shutdown = AsyncMock(return_value=make_result())
    return client


class TestShutdownResult:
    def test_forced(self) -> None:
        assert not make_result().forced
        assert make_result(drained=False).forced

    def test_to_dict(self) -> None:
        assert make_result(drained=False).to_dict() == {
            "duration_seconds": 0.1,
            "drained": False,
            "in_flight_at_start": 2,
            "not_drained": 1,
            "timeout_seconds": 5.0,
        }


class TestTrigger:
    """Tests for ShutdownHook.trigger() and wait()."""

    @pytest.mark.asyncio
    async def test_runs_graceful_shutdown_once(self, fake_client: MagicMock) -> None:
        hook = ShutdownHook(fake_client, timeout=3.0)
        assert not hook.triggered

        hook.trigger(signal.SIGTERM)
        hook.trigger(signal.SIGINT)
        result = await hook.wait()

        assert hook.triggered
        assert result is hook.result
        assert result is not None and result.drained
        fake_client.graceful_shutdown.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_default_timeout_is_none(self, fake_client: MagicMock) -> None:
        hook = ShutdownHook(fake_client)
        hook.trigger()
        await hook.wait()
        fake_client.graceful_shutdown.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_sync_on_exit(self, fake_client: MagicMock) -> None:
        seen: list[ShutdownResult] = []
        hook = ShutdownHook(fake_client, on_exit=seen.append)
        hook.trigger()
        result = await hook.wait()
        assert seen == [result]

    @pytest.mark.asyncio
    async def test_async_on_exit_awaited(self, fake_client: MagicMock) -> None:
        on_exit = AsyncMock()
        hook = ShutdownHook(fake_client, on_exit=on_exit)
        hook.trigger()
        await hook.wait()
        on_exit.assert_awaited_once_with(hook.result)

    @pytest.mark.asyncio
    async def test_failure_propagates_to_wait(self, fake_client: MagicMock) -> None:
        fake_client.graceful_shutdown.side_effect = RuntimeError("close failed")
        hook = ShutdownHook(fake_client)
        hook.trigger()
        with pytest.raises(RuntimeError, match="close failed"):
            await hook.wait()
        assert hook.result is None

    @pytest.mark.asyncio
    async def test_wait_blocks_until_triggered(self, fake_client: MagicMock) -> None:
        hook = ShutdownHook(fake_client)
        waiter = asyncio.create_task(hook.wait())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        hook.trigger()
        assert await asyncio.wait_for(waiter, timeout=1.0) is hook.result


class TestSignals:
    """Tests for register_signals() and unregister_signals()."""

    def test_default_signals_include_sigterm(self) -> None:
        assert signal.SIGTERM in DEFAULT_SIGNALS
        assert signal.SIGINT in DEFAULT_SIGNALS

    def test_register_and_unregister(self, fake_client: MagicMock) -> None:
        loop = MagicMock()
        hook = ShutdownHook(fake_client)

        hook.register_signals(loop, signals=(signal.SIGTERM, signal.SIGINT))

        assert loop.add_signal_handler.call_count == 2
        loop.add_signal_handler.assert_any_call(signal.SIGTERM, hook.trigger, signal.SIGTERM)

        hook.unregister_signals()
        loop.remove_signal_handler.assert_any_call(signal.SIGTERM)
        loop.remove_signal_handler.assert_any_call(signal.SIGINT)

    def test_register_twice_warns(
        self, fake_client: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        loop = MagicMock()
        hook = ShutdownHook(fake_client)
        hook.register_signals(loop, signals=(signal.SIGTERM,))
        hook.register_signals(loop, signals=(signal.SIGTERM,))

        assert loop.add_signal_handler.call_count == 1
        assert "already registered" in caplog.text

    def test_unsupported_platform(
        self, fake_client: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        loop = MagicMock()
        loop.add_signal_handler.side_effect = NotImplementedError
        hook = ShutdownHook(fake_client)

        hook.register_signals(loop, signals=(signal.SIGTERM,))

        assert "not supported" in caplog.text
        hook.unregister_signals()
        loop.remove_signal_handler.assert_not_called()

    def test_unregister_without_register(self, fake_client: MagicMock) -> None:
        ShutdownHook(fake_client).unregister_signals()
