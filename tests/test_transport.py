"""Tests for RemoteIdeTransport connection lifecycle and reconnection."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, call, patch

import pytest

from remote_ide_client.errors import (
    RemoteIdeConnectionError,
    RemoteIdeHandshakeError,
    RemoteIdeNotConnectedError,
    RemoteIdeWriteError,
)
from remote_ide_client.transport import RemoteIdeTransport, backoff_delays, open_channel
from remote_ide_client.ws_client import RemoteIdeWsMessage, RemoteIdeWsMessageType

URL = "ws://localhost:3002/ws?token=secret"
WS_CLIENT = "remote_ide_client.transport.RemoteIdeWsClient"


def frame(data: str | bytes) -> RemoteIdeWsMessage:
    return RemoteIdeWsMessage(RemoteIdeWsMessageType.FRAME, data)


class FakeWsClient:
    """Stands in for RemoteIdeWsClient: fixed frames, then closed or held open."""

    def __init__(
        self,
        messages: list[RemoteIdeWsMessage] | None = None,
        *,
        connect_error: Exception | None = None,
        read_error: Exception | None = None,
        hold_open: bool = False,
    ) -> None:
        self.messages = list(messages or [])
        self.connect = AsyncMock(side_effect=connect_error)
        self.close = AsyncMock()
        self.send_text = AsyncMock()
        self._read_error = read_error
        self._hold_open = hold_open

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for msg in self.messages:
            yield msg
        if self._read_error is not None:
            raise self._read_error
        if self._hold_open:
            await asyncio.Event().wait()
        yield RemoteIdeWsMessage(RemoteIdeWsMessageType.CLOSED)


def failing_client() -> FakeWsClient:
    return FakeWsClient(connect_error=RemoteIdeConnectionError("refused"))


async def collect(transport: RemoteIdeTransport) -> list[str | bytes]:
    return [item async for item in transport.receive()]


class TestBackoffDelays:
    """Tests for backoff_delays()."""

    def test_default_schedule(self):
        """Test the doubling schedule caps at the maximum."""
        assert backoff_delays(1.0, 30.0, 10) == [
            1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0, 30.0, 30.0
        ]

    def test_zero_attempts(self):
        """Test no attempts yields no delays."""
        assert backoff_delays(1.0, 30.0, 0) == []


class TestTransportConnect:
    """Tests for RemoteIdeTransport.connect()."""

    async def test_initial_state(self):
        """Test a new transport is disconnected."""
        transport = RemoteIdeTransport(URL)
        assert transport.connection_state == "disconnected"
        assert not transport.is_connected

    async def test_connect_success(self):
        """Test connect performs the handshake and reports state changes."""
        client = FakeWsClient(hold_open=True)
        states: list[str] = []

        with patch(WS_CLIENT, return_value=client):
            transport = RemoteIdeTransport(URL, ping_interval=10, timeout=3.0)
            transport.on_connection_state_changed(states.append)
            await transport.connect()

            client.connect.assert_awaited_once_with(URL, ping_interval=10, timeout=3.0)
            assert transport.is_connected
            await transport.close()

        assert states == ["connecting", "connected", "closed"]

    async def test_connect_failure(self):
        """Test a failed handshake propagates and leaves the transport disconnected."""
        client = FakeWsClient(connect_error=RemoteIdeHandshakeError("rejected"))
        states: list[str] = []

        with patch(WS_CLIENT, return_value=client):
            transport = RemoteIdeTransport(URL)
            transport.on_connection_state_changed(states.append)
            with pytest.raises(RemoteIdeHandshakeError):
                await transport.connect()

        assert transport.connection_state == "disconnected"
        assert states == ["connecting", "disconnected"]

    async def test_connect_twice_is_noop(self):
        """Test a second connect does not open another connection."""
        with patch(WS_CLIENT, return_value=FakeWsClient(hold_open=True)) as factory:
            transport = RemoteIdeTransport(URL)
            await transport.connect()
            await transport.connect()
            assert factory.call_count == 1
            await transport.close()

    async def test_connect_after_close(self):
        """Test a closed transport cannot be reopened."""
        transport = RemoteIdeTransport(URL)
        await transport.close()
        with pytest.raises(RemoteIdeConnectionError, match="closed"):
            await transport.connect()

    async def test_open_channel(self):
        """Test open_channel derives the URL and connects."""
        client = FakeWsClient(hold_open=True)

        with patch(WS_CLIENT, return_value=client):
            transport = await open_channel("http://localhost:3002", "tok")
            assert transport.url == "ws://localhost:3002/ws?token=tok"
            client.connect.assert_awaited_once_with(
                "ws://localhost:3002/ws?token=tok", ping_interval=20, timeout=15.0
            )
            await transport.close()


class TestTransportReceive:
    """Tests for RemoteIdeTransport.receive()."""

    async def test_frames_in_order(self):
        """Test text and binary frames arrive in receipt order."""
        client = FakeWsClient([frame("a"), frame(b"b"), frame("c")], hold_open=True)
        received: list[str | bytes] = []

        with patch(WS_CLIENT, return_value=client):
            transport = RemoteIdeTransport(URL)
            await transport.connect()
            async for item in transport.receive():
                received.append(item)
                if len(received) == 3:
                    await transport.close()

        assert received == ["a", b"b", "c"]
        assert transport.connection_state == "closed"

    async def test_receive_after_end_returns_immediately(self):
        """Test the sequence stays ended once it has ended."""
        transport = RemoteIdeTransport(URL)
        await transport.close()
        assert await collect(transport) == []
        assert await collect(transport) == []


class TestTransportReconnect:
    """Tests for reconnection after a lost connection."""

    async def test_backoff_sequence_then_end(self):
        """Test ten failed attempts follow the schedule and end the stream."""
        first = FakeWsClient([frame("hello")])
        clients = [first] + [failing_client() for _ in range(10)]
        states: list[str] = []

        with patch(WS_CLIENT, side_effect=clients):
            transport = RemoteIdeTransport(URL)
            transport._sleep = AsyncMock()
            transport.on_connection_state_changed(states.append)
            await transport.connect()
            received = await collect(transport)

        assert received == ["hello"]
        assert transport._sleep.await_args_list == [
            call(1.0), call(2.0), call(4.0), call(8.0), call(16.0),
            call(30.0), call(30.0), call(30.0), call(30.0), call(30.0),
        ]
        first.close.assert_awaited()
        assert states == ["connecting", "connected", "reconnecting", "disconnected"]
        await transport.close()

    async def test_backoff_resets_after_success(self):
        """Test each new disconnection starts again from the base delay."""
        last = FakeWsClient([frame("c")], hold_open=True)
        clients = [
            FakeWsClient([frame("a")]),
            failing_client(),
            FakeWsClient([frame("b")]),
            last,
        ]
        received: list[str | bytes] = []

        with patch(WS_CLIENT, side_effect=clients):
            transport = RemoteIdeTransport(URL)
            transport._sleep = AsyncMock()
            await transport.connect()
            async for item in transport.receive():
                received.append(item)
                if item == "c":
                    await transport.close()

        assert received == ["a", "b", "c"]
        assert transport._sleep.await_args_list == [call(1.0), call(2.0), call(1.0)]
        last.close.assert_awaited_once()

    async def test_three_failures_then_later_failure_restarts(self):
        """Test a disconnection after a recovery does not continue the old schedule."""
        clients = [
            FakeWsClient([frame("a")]),
            failing_client(),
            failing_client(),
            failing_client(),
            FakeWsClient([frame("b")]),
            FakeWsClient([frame("c")], hold_open=True),
        ]
        received: list[str | bytes] = []

        with patch(WS_CLIENT, side_effect=clients):
            transport = RemoteIdeTransport(URL)
            transport._sleep = AsyncMock()
            await transport.connect()
            async for item in transport.receive():
                received.append(item)
                if item == "c":
                    await transport.close()

        assert received == ["a", "b", "c"]
        assert transport._sleep.await_args_list == [
            call(1.0), call(2.0), call(4.0), call(8.0), call(1.0)
        ]

    async def test_read_error_triggers_reconnect(self):
        """Test a read failure is treated like a lost connection."""
        clients = [
            FakeWsClient([frame("a")], read_error=RemoteIdeConnectionError("reset")),
            FakeWsClient([frame("b")], hold_open=True),
        ]
        received: list[str | bytes] = []

        with patch(WS_CLIENT, side_effect=clients):
            transport = RemoteIdeTransport(URL)
            transport._sleep = AsyncMock()
            await transport.connect()
            async for item in transport.receive():
                received.append(item)
                if item == "b":
                    await transport.close()

        assert received == ["a", "b"]

    async def test_close_during_backoff_stops_reconnecting(self):
        """Test closing while waiting to reconnect ends the loop."""
        sleeping = asyncio.Event()

        async def blocking_sleep(delay: float) -> None:
            sleeping.set()
            await asyncio.Event().wait()

        with patch(WS_CLIENT, side_effect=[FakeWsClient()]) as factory:
            transport = RemoteIdeTransport(URL)
            transport._sleep = blocking_sleep
            await transport.connect()
            await sleeping.wait()

            assert transport.connection_state == "reconnecting"
            await transport.close()
            received = await collect(transport)

        assert received == []
        assert factory.call_count == 1
        assert transport.connection_state == "closed"

    async def test_custom_schedule(self):
        """Test reconnect limits come from the constructor."""
        clients = [FakeWsClient()] + [failing_client() for _ in range(3)]

        with patch(WS_CLIENT, side_effect=clients):
            transport = RemoteIdeTransport(
                URL, retry_base_delay=0.5, retry_max_delay=1.0, max_reconnect_attempts=3
            )
            transport._sleep = AsyncMock()
            await transport.connect()
            await collect(transport)

        assert transport._sleep.await_args_list == [call(0.5), call(1.0), call(1.0)]


class TestTransportSend:
    """Tests for RemoteIdeTransport.send()."""

    async def test_send_connected(self):
        """Test a frame is written to the live connection."""
        client = FakeWsClient(hold_open=True)

        with patch(WS_CLIENT, return_value=client):
            transport = RemoteIdeTransport(URL)
            await transport.connect()
            await transport.send('{"type":"interrupt"}')
            await transport.close()

        client.send_text.assert_awaited_once_with('{"type":"interrupt"}')

    async def test_send_before_connect(self):
        """Test sending without a connection fails fast."""
        transport = RemoteIdeTransport(URL)
        with pytest.raises(RemoteIdeNotConnectedError, match="not connected"):
            await transport.send("{}")

    async def test_send_after_close(self):
        """Test sending on a closed channel fails."""
        transport = RemoteIdeTransport(URL)
        await transport.close()
        with pytest.raises(RemoteIdeNotConnectedError, match="closed"):
            await transport.send("{}")

    async def test_send_while_reconnecting(self):
        """Test sends are not queued while the connection is down."""
        sleeping = asyncio.Event()

        async def blocking_sleep(delay: float) -> None:
            sleeping.set()
            await asyncio.Event().wait()

        with patch(WS_CLIENT, side_effect=[FakeWsClient()]):
            transport = RemoteIdeTransport(URL)
            transport._sleep = blocking_sleep
            await transport.connect()
            await sleeping.wait()

            with pytest.raises(RemoteIdeNotConnectedError):
                await transport.send("{}")
            await transport.close()

    async def test_send_write_error_propagates(self):
        """Test write failures reach the caller."""
        client = FakeWsClient(hold_open=True)
        client.send_text.side_effect = RemoteIdeWriteError("broken pipe")

        with patch(WS_CLIENT, return_value=client):
            transport = RemoteIdeTransport(URL)
            await transport.connect()
            with pytest.raises(RemoteIdeWriteError):
                await transport.send("{}")
            await transport.close()


class TestTransportClose:
    """Tests for RemoteIdeTransport.close()."""

    async def test_close_idempotent(self):
        """Test closing twice closes the connection once."""
        client = FakeWsClient(hold_open=True)

        with patch(WS_CLIENT, return_value=client):
            transport = RemoteIdeTransport(URL)
            await transport.connect()
            await transport.close()
            await transport.close()

        client.close.assert_awaited_once()
        assert transport.connection_state == "closed"

