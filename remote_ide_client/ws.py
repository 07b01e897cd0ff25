"""WebSocket helpers for the Remote IDE realtime channel."""

from __future__ import annotations

import asyncio
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    RemoteIdeConnectionError,
    RemoteIdeHandshakeError,
    RemoteIdeTimeout,
)

CHANNEL_PATH = "/ws"

_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def build_channel_url(base_url: str, token: str, *, path: str = CHANNEL_PATH) -> str:
    """Derive the channel URL from a server base address.

    ``http`` becomes ``ws`` and ``https`` becomes ``wss``. The token is
    attached as the ``token`` query parameter so that it is sent with every
    handshake, including reconnects.

    Raises:
        ValueError: If the base address has no host or an unsupported scheme.
    """
    parts = urlsplit(base_url.strip())
    scheme = _SCHEMES.get(parts.scheme.lower())
    if scheme is None:
        raise ValueError(f"Unsupported server URL scheme: {parts.scheme!r}")
    if not parts.netloc:
        raise ValueError(f"Server URL has no host: {base_url!r}")
    return urlunsplit((scheme, parts.netloc, path, urlencode({"token": token}), ""))


def redact_channel_url(url: str) -> str:
    """Return the channel URL without its query string, for logs."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open the channel WebSocket.

    Inbound frames have no size limit.

    Args:
        url: Full channel URL including the token query parameter
        ping_interval: Interval for ping frames
        timeout: Connection timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise RemoteIdeTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise RemoteIdeHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise RemoteIdeConnectionError("WebSocket connection failed") from err
