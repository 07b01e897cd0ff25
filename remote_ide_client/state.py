"""Conversation state, events and effects for the interaction state machine.

Everything here is immutable. ``machine.fold`` is the only code that
produces new ``ConversationState`` values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias

from .protocol import PermissionRequest

KEY_ENTER = "enter"
KEY_BACKSPACE = "backspace"
KEY_INTERRUPT = "ctrl+c"
KEY_QUIT = "ctrl+d"

# Keys that never insert text into the draft
NAMED_KEYS = frozenset(
    {
        KEY_ENTER,
        KEY_BACKSPACE,
        KEY_INTERRUPT,
        KEY_QUIT,
        "escape",
        "tab",
        "up",
        "down",
        "left",
        "right",
        "home",
        "end",
        "delete",
    }
)

STATUS_READY = "ready"
STATUS_BUSY = "busy"
STATUS_ERROR = "error"


class Role(Enum):
    """Who a chat entry belongs to."""

    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


@dataclass(frozen=True)
class ChatEntry:
    """One line of the conversation, immutable once appended."""

    role: Role
    content: str


@dataclass(frozen=True)
class ConversationState:
    """Snapshot of everything the client shows.

    Attributes:
        session_id: Active session, stamped on every outbound envelope.
        entries: Conversation in append (display) order.
        stream_buffer: Assistant text streamed for the open turn.
        connected: Whether the channel is currently live.
        status: Last server-reported session status.
        pending_permission: Outstanding permission request, if any.
        draft: Text typed but not yet submitted.
        width: Terminal width.
        height: Terminal height.
        quitting: Set once the quit sequence has begun.
    """

    session_id: str
    entries: tuple[ChatEntry, ...] = ()
    stream_buffer: str = ""
    connected: bool = True
    status: str = STATUS_READY
    pending_permission: PermissionRequest | None = None
    draft: str = ""
    width: int = 80
    height: int = 24
    quitting: bool = False


# --------------------------------------------------------------------------
# Events
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Resized:
    """Terminal size changed."""

    width: int
    height: int


@dataclass(frozen=True)
class KeyPressed:
    """A named key (see ``NAMED_KEYS``) or literal typed/pasted text."""

    key: str


@dataclass(frozen=True)
class FrameReceived:
    """One raw inbound frame from the transport."""

    data: str | bytes


@dataclass(frozen=True)
class ConnectionChanged:
    """Transport went live or lost its connection."""

    connected: bool


@dataclass(frozen=True)
class ChannelClosed:
    """Inbound sequence ended for good."""


@dataclass(frozen=True)
class SendFailed:
    """An outbound envelope could not be written."""

    reason: str


Event: TypeAlias = (
    Resized | KeyPressed | FrameReceived | ConnectionChanged | ChannelClosed | SendFailed
)


# --------------------------------------------------------------------------
# Effects
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class SendEnvelope:
    """Write this envelope to the channel, fire-and-forget."""

    envelope: dict[str, Any]


@dataclass(frozen=True)
class ListenNext:
    """Wait for the next inbound frame."""


Effect: TypeAlias = SendEnvelope | ListenNext
