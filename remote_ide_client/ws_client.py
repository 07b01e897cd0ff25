"""WebSocket client wrapper for the Remote IDE channel."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import RemoteIdeNotConnectedError, RemoteIdeWriteError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class RemoteIdeWsMessageType(Enum):
    """Normalized WebSocket message types."""

    FRAME = "frame"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class RemoteIdeWsMessage:
    """Normalized WebSocket message payload."""

    type: RemoteIdeWsMessageType
    data: str | bytes | None = None


class RemoteIdeWsClient:
    """Wrapper around websockets library for the Remote IDE channel."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: int = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the channel websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection (sends a normal-closure frame)."""
        if self._ws is not None:
            await self._ws.close()

    async def send_text(self, data: str) -> None:
        """Send one text frame.

        Raises:
            RemoteIdeNotConnectedError: If not connected
            RemoteIdeWriteError: If the write fails
        """
        if self._ws is None:
            raise RemoteIdeNotConnectedError("WebSocket is not connected")
        try:
            await self._ws.send(data)
        except (ConnectionClosed, WebSocketException, OSError) as err:
            raise RemoteIdeWriteError(f"WebSocket write failed: {err}") from err

    def __aiter__(self) -> AsyncIterator[RemoteIdeWsMessage]:
        if self._ws is None:
            raise RemoteIdeNotConnectedError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[RemoteIdeWsMessage]:
        if self._ws is None:
            raise RemoteIdeNotConnectedError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                yield self._normalize_message(msg)
        except ConnectionClosed:
            yield RemoteIdeWsMessage(type=RemoteIdeWsMessageType.CLOSED)
        except (WebSocketException, OSError):
            yield RemoteIdeWsMessage(type=RemoteIdeWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield RemoteIdeWsMessage(type=RemoteIdeWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> RemoteIdeWsMessage:
        """Normalize a received frame into RemoteIdeWsMessage.

        Text and binary frames are both delivered; the codec decides what
        they mean.
        """
        if isinstance(msg, (str, bytes)):
            return RemoteIdeWsMessage(RemoteIdeWsMessageType.FRAME, msg)
        if isinstance(msg, (bytearray, memoryview)):
            return RemoteIdeWsMessage(RemoteIdeWsMessageType.FRAME, bytes(msg))
        return RemoteIdeWsMessage(RemoteIdeWsMessageType.FRAME, str(msg))
