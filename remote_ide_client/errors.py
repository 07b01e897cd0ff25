"""Client error types for Remote IDE server interactions."""

from __future__ import annotations


class RemoteIdeClientError(Exception):
    """Base error for Remote IDE client failures."""


class RemoteIdeTimeout(RemoteIdeClientError):
    """Timeout while communicating with the server."""


class RemoteIdeConnectionError(RemoteIdeClientError):
    """Network connection to the server failed."""


class RemoteIdeHandshakeError(RemoteIdeClientError):
    """WebSocket handshake failed."""


class RemoteIdeNotConnectedError(RemoteIdeConnectionError):
    """No live channel is available for sending."""


class RemoteIdeWriteError(RemoteIdeConnectionError):
    """Writing a frame to the channel failed."""


class RemoteIdeResponseError(RemoteIdeClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class ConfigError(Exception):
    """Error loading, saving or querying the client configuration."""
