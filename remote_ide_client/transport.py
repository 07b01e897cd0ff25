"""Resilient transport for the Remote IDE realtime channel.

This module owns the physical WebSocket connection. It handles:
- Initial handshake (token carried in the channel URL on every attempt)
- A background reader feeding a bounded frame queue
- Reconnection with exponential backoff after read failures
- Best-effort sends that fail fast when no connection is live
- Scoped shutdown

Callers never see the connection handle or its lock; they only use
``connect``, ``receive``, ``send`` and ``close``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

from websockets.exceptions import WebSocketException

from .errors import (
    RemoteIdeClientError,
    RemoteIdeConnectionError,
    RemoteIdeNotConnectedError,
)
from .ws import build_channel_url, redact_channel_url
from .ws_client import RemoteIdeWsClient, RemoteIdeWsMessageType

_LOGGER = logging.getLogger(__name__)

DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_FRAME_QUEUE_SIZE = 100

# Queued after the last frame; receive() ends when it sees this.
_END_OF_STREAM = object()


def backoff_delays(base: float, maximum: float, attempts: int) -> list[float]:
    """Return the reconnect delay for each attempt: base, doubling, capped."""
    return [min(base * (2**n), maximum) for n in range(attempts)]


class RemoteIdeTransport:
    """Persistent channel to a Remote IDE server with automatic reconnection.

    Usage:
        transport = RemoteIdeTransport(build_channel_url(base_url, token))
        await transport.connect()
        async for frame in transport.receive():
            handle(frame)
        await transport.send(encode_envelope(envelope))
        await transport.close()
    """

    def __init__(
        self,
        url: str,
        *,
        ping_interval: int = 20,
        timeout: float = 15.0,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        queue_size: int = DEFAULT_FRAME_QUEUE_SIZE,
    ) -> None:
        """Initialize transport.

        Args:
            url: Channel URL including the token query parameter
            ping_interval: Keepalive ping interval (seconds)
            timeout: Handshake timeout (seconds)
            retry_base_delay: First reconnect delay (seconds)
            retry_max_delay: Maximum reconnect delay (seconds)
            max_reconnect_attempts: Attempts before giving up for good
            queue_size: Inbound frames buffered before the reader waits
        """
        self.url = url
        self._label = redact_channel_url(url)

        self._ping_interval = ping_interval
        self._timeout = timeout
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._max_reconnect_attempts = max_reconnect_attempts

        # Connection handle, guarded by _lock
        self._ws: RemoteIdeWsClient | None = None
        self._lock = asyncio.Lock()

        self._frames: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._reader_task: asyncio.Task[None] | None = None
        self._closed = False
        self._end_queued = False
        self._end_delivered = False

        self._connection_state = "disconnected"
        self._connection_state_callback: Callable[[str], None] | None = None

        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Perform the initial handshake and start the background reader.

        Raises:
            RemoteIdeTimeout: Handshake timed out
            RemoteIdeHandshakeError: Server rejected the handshake
            RemoteIdeConnectionError: Network failure, or transport closed
        """
        if self._closed:
            raise RemoteIdeConnectionError("Transport is closed")
        if self._reader_task is not None:
            return

        self._set_state("connecting")
        try:
            await self._open()
        except RemoteIdeClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self._label, err)
            self._set_state("disconnected")
            raise

        self._set_state("connected")
        self._reader_task = asyncio.create_task(self._read_loop())

    async def receive(self) -> AsyncGenerator[str | bytes, None]:
        """Yield inbound frames in receipt order.

        Ends only after reconnection is exhausted or ``close()`` is called.
        Calling it again resumes where the previous iteration stopped.
        """
        while not self._end_delivered:
            item = await self._frames.get()
            if item is _END_OF_STREAM:
                self._end_delivered = True
                return
            yield item

    async def send(self, data: str) -> None:
        """Send one frame without queuing.

        Raises:
            RemoteIdeNotConnectedError: No live connection
            RemoteIdeWriteError: The write failed
        """
        if self._closed:
            raise RemoteIdeNotConnectedError("Channel is closed")
        async with self._lock:
            if self._ws is None:
                raise RemoteIdeNotConnectedError("WebSocket is not connected")
            await self._ws.send_text(data)

    async def close(self) -> None:
        """Close the channel and stop reconnecting. Idempotent."""
        if self._closed:
            return
        _LOGGER.info("[%s] Closing channel", self._label)
        self._closed = True

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        async with self._lock:
            ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_quietly(ws)

        if not self._end_queued:
            self._queue_end_nowait()
        self._set_state("closed")

    @property
    def is_connected(self) -> bool:
        """Check if a live connection is held."""
        return self._connection_state == "connected"

    @property
    def connection_state(self) -> str:
        """Get current connection state."""
        return self._connection_state

    def on_connection_state_changed(self, callback: Callable[[str], None]) -> None:
        """Register callback for connection state changes.

        Callback receives state: "connecting", "connected", "reconnecting",
        "disconnected", "closed"
        """
        self._connection_state_callback = callback

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: str) -> None:
        """Update connection state and notify callback."""
        if self._connection_state != state:
            _LOGGER.debug(
                "[%s] State: %s → %s", self._label, self._connection_state, state
            )
            self._connection_state = state
            if self._connection_state_callback:
                self._connection_state_callback(state)

    async def _open(self) -> None:
        """Handshake and install a fresh connection handle."""
        _LOGGER.info("[%s] Connecting", self._label)
        ws_client = RemoteIdeWsClient()
        await ws_client.connect(
            self.url,
            ping_interval=self._ping_interval,
            timeout=self._timeout,
        )
        async with self._lock:
            self._ws = ws_client
        _LOGGER.info("[%s] WebSocket connected", self._label)

    async def _discard(self, ws: RemoteIdeWsClient) -> None:
        """Release a failed connection handle."""
        async with self._lock:
            if self._ws is ws:
                self._ws = None
        await self._close_quietly(ws)

    async def _close_quietly(self, ws: RemoteIdeWsClient) -> None:
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self._label)
        except (RemoteIdeClientError, WebSocketException, OSError) as err:
            _LOGGER.debug("[%s] WebSocket close failed: %s", self._label, err)

    async def _reconnect(self) -> bool:
        """Retry the handshake with exponential backoff.

        Returns:
            True once reconnected, False when attempts are exhausted or the
            transport was closed meanwhile.
        """
        self._set_state("reconnecting")
        delays = backoff_delays(
            self._retry_base_delay,
            self._retry_max_delay,
            self._max_reconnect_attempts,
        )
        for attempt, delay in enumerate(delays, start=1):
            _LOGGER.info(
                "[%s] Reconnecting in %gs (attempt %d/%d)",
                self._label,
                delay,
                attempt,
                len(delays),
            )
            await self._sleep(delay)
            if self._closed:
                return False
            try:
                await self._open()
            except RemoteIdeClientError as err:
                _LOGGER.warning(
                    "[%s] Reconnect attempt %d failed: %s", self._label, attempt, err
                )
                continue
            self._set_state("connected")
            return True

        _LOGGER.error(
            "[%s] Giving up after %d reconnect attempts", self._label, len(delays)
        )
        self._set_state("disconnected")
        return False

    # -------------------------------------------------------------------------
    # Internal: Reader
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        """Deliver frames until closed or reconnection is exhausted."""
        frame_count = 0
        try:
            while not self._closed:
                # Hold the lock only to pick up the current handle.
                async with self._lock:
                    ws = self._ws
                if ws is None:
                    break

                frame_count += await self._pump(ws)
                if self._closed:
                    break

                await self._discard(ws)
                if not await self._reconnect():
                    break

            await self._frames.put(_END_OF_STREAM)
            self._end_queued = True
        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Reader cancelled (%d frames)", self._label, frame_count
            )
            raise
        finally:
            if not self._end_queued:
                self._queue_end_nowait()

    async def _pump(self, ws: RemoteIdeWsClient) -> int:
        """Move frames from one connection into the queue until it fails."""
        count = 0
        try:
            async for msg in ws:
                if msg.type is RemoteIdeWsMessageType.FRAME and msg.data is not None:
                    count += 1
                    await self._frames.put(msg.data)
                elif msg.type is RemoteIdeWsMessageType.CLOSED:
                    _LOGGER.info("[%s] WebSocket closed by server", self._label)
                    break
                elif msg.type is RemoteIdeWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self._label)
                    break
        except RemoteIdeClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self._label, err)
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected read error: %s", self._label, err)
        return count

    def _queue_end_nowait(self) -> None:
        """Queue the end marker without waiting, dropping undelivered frames."""
        while True:
            try:
                self._frames.put_nowait(_END_OF_STREAM)
                break
            except asyncio.QueueFull:
                self._frames.get_nowait()
        self._end_queued = True


async def open_channel(base_url: str, token: str, **kwargs: Any) -> RemoteIdeTransport:
    """Build the channel URL for ``base_url`` and connect.

    Extra keyword arguments are passed to ``RemoteIdeTransport``.
    """
    transport = RemoteIdeTransport(build_channel_url(base_url, token), **kwargs)
    await transport.connect()
    return transport
