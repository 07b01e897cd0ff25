"""Terminal client for Remote IDE coding-assistant servers."""

__version__ = "0.1.0"

from .app import ChatApp
from .config import ClientConfig, ServerProfile, load_config, save_config
from .errors import (
    ConfigError,
    RemoteIdeClientError,
    RemoteIdeConnectionError,
    RemoteIdeHandshakeError,
    RemoteIdeNotConnectedError,
    RemoteIdeResponseError,
    RemoteIdeTimeout,
    RemoteIdeWriteError,
)
from .http import RemoteIdeHttpClient
from .machine import fold, initial_state
from .protocol import (
    build_interrupt,
    build_permission_response,
    build_reset_session,
    build_user_message,
    decode_server_message,
    encode_envelope,
)
from .state import ConversationState
from .transport import RemoteIdeTransport, open_channel
from .ws import build_channel_url, connect_websocket
from .ws_client import RemoteIdeWsClient, RemoteIdeWsMessage, RemoteIdeWsMessageType

__all__ = [
    "ChatApp",
    "ClientConfig",
    "ConfigError",
    "ConversationState",
    "RemoteIdeClientError",
    "RemoteIdeConnectionError",
    "RemoteIdeHandshakeError",
    "RemoteIdeHttpClient",
    "RemoteIdeNotConnectedError",
    "RemoteIdeResponseError",
    "RemoteIdeTimeout",
    "RemoteIdeTransport",
    "RemoteIdeWriteError",
    "RemoteIdeWsClient",
    "RemoteIdeWsMessage",
    "RemoteIdeWsMessageType",
    "ServerProfile",
    "__version__",
    "build_channel_url",
    "build_interrupt",
    "build_permission_response",
    "build_reset_session",
    "build_user_message",
    "connect_websocket",
    "decode_server_message",
    "encode_envelope",
    "fold",
    "initial_state",
    "load_config",
    "open_channel",
    "save_config",
]
