"""Interaction state machine.

``fold`` maps ``(state, event)`` to ``(new state, effects)``. It is pure:
it never touches the network or the terminal, it only describes what
should be sent and whether another frame should be awaited.

Regimes:
- Normal: keys edit the draft; ``enter`` submits text or a slash command.
- Awaiting permission: only y/Y/n/N act, even the ctrl+c and ctrl+d
  shortcuts are ignored; the draft is left alone.
- Disconnected: rendered differently, otherwise the same rules apply.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum

from .protocol import (
    AssistantChunk,
    AssistantMessage,
    MalformedMessage,
    PermissionRequest,
    Result,
    ServerMessage,
    SessionState,
    UnknownMessageType,
    build_interrupt,
    build_permission_response,
    build_reset_session,
    build_user_message,
    condition_message,
    decode_server_message,
)
from .state import (
    KEY_BACKSPACE,
    KEY_ENTER,
    KEY_INTERRUPT,
    KEY_QUIT,
    NAMED_KEYS,
    STATUS_BUSY,
    ChannelClosed,
    ChatEntry,
    ConnectionChanged,
    ConversationState,
    Effect,
    Event,
    FrameReceived,
    KeyPressed,
    ListenNext,
    Resized,
    Role,
    SendEnvelope,
    SendFailed,
)

HELP_TEXT = """Available commands:
  /help   - Show this help
  /reset  - Reset the current session
  /quit   - Exit the application

Shortcuts:
  Ctrl+C  - Interrupt current operation
  Ctrl+D  - Quit"""

RESET_NOTICE = "Session reset requested"

ACCEPT_KEYS = frozenset({"y", "Y"})
DENY_KEYS = frozenset({"n", "N"})


class SlashCommand(Enum):
    """Recognized draft commands."""

    NONE = "none"
    QUIT = "quit"
    RESET = "reset"
    HELP = "help"


def parse_slash_command(text: str) -> SlashCommand:
    """Classify a submitted draft."""
    text = text.strip()
    if text in ("/quit", "/exit"):
        return SlashCommand.QUIT
    if text == "/reset":
        return SlashCommand.RESET
    if text == "/help":
        return SlashCommand.HELP
    return SlashCommand.NONE


def initial_state(session_id: str, *, width: int = 80, height: int = 24) -> ConversationState:
    """State at client start: connected, ready, empty conversation."""
    return ConversationState(session_id=session_id, width=width, height=height)


def fold(state: ConversationState, event: Event) -> tuple[ConversationState, list[Effect]]:
    """Fold one event into the state.

    Returns:
        The new state and the effects to execute, in order.
    """
    if state.quitting:
        return state, []

    if isinstance(event, Resized):
        return replace(state, width=event.width, height=event.height), []
    if isinstance(event, KeyPressed):
        return _fold_key(state, event.key)
    if isinstance(event, FrameReceived):
        new_state = _apply_server_message(state, decode_server_message(event.data))
        return new_state, [ListenNext()]
    if isinstance(event, ConnectionChanged):
        return replace(state, connected=event.connected), []
    if isinstance(event, ChannelClosed):
        return replace(state, connected=False), []
    if isinstance(event, SendFailed):
        return _append(state, Role.ERROR, f"Send failed: {event.reason}"), []
    raise TypeError(f"Unsupported event: {event!r}")


def _append(state: ConversationState, role: Role, content: str) -> ConversationState:
    return replace(state, entries=(*state.entries, ChatEntry(role, content)))


def _quit(state: ConversationState) -> tuple[ConversationState, list[Effect]]:
    return replace(state, quitting=True), []


# --------------------------------------------------------------------------
# Keyboard
# --------------------------------------------------------------------------


def _fold_key(state: ConversationState, key: str) -> tuple[ConversationState, list[Effect]]:
    if state.pending_permission is not None:
        return _fold_permission_key(state, state.pending_permission, key)

    if key == KEY_QUIT:
        return _quit(state)
    if key == KEY_INTERRUPT:
        if state.status == STATUS_BUSY:
            return state, [SendEnvelope(build_interrupt(session_id=state.session_id))]
        return _quit(state)

    if key == KEY_ENTER:
        return _submit(state)
    if key == KEY_BACKSPACE:
        return replace(state, draft=state.draft[:-1]), []
    if key in NAMED_KEYS:
        return state, []

    # Pasted line breaks become spaces.
    key = key.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    text = "".join(ch for ch in key if ch.isprintable())
    if not text:
        return state, []
    return replace(state, draft=state.draft + text), []


def _fold_permission_key(
    state: ConversationState, request: PermissionRequest, key: str
) -> tuple[ConversationState, list[Effect]]:
    if key in ACCEPT_KEYS:
        allowed = True
        role, content = Role.ASSISTANT, f"Allowed: {request.tool_name}"
    elif key in DENY_KEYS:
        allowed = False
        role, content = Role.ERROR, f"Denied: {request.tool_name}"
    else:
        return state, []

    envelope = build_permission_response(
        session_id=state.session_id,
        request_id=request.request_id,
        allowed=allowed,
    )
    new_state = replace(_append(state, role, content), pending_permission=None)
    return new_state, [SendEnvelope(envelope)]


def _submit(state: ConversationState) -> tuple[ConversationState, list[Effect]]:
    text = state.draft.strip()
    if not text:
        return state, []
    state = replace(state, draft="")

    command = parse_slash_command(text)
    if command is SlashCommand.QUIT:
        return _quit(state)
    if command is SlashCommand.RESET:
        envelope = build_reset_session(session_id=state.session_id)
        return _append(state, Role.ERROR, RESET_NOTICE), [SendEnvelope(envelope)]
    if command is SlashCommand.HELP:
        return _append(state, Role.ASSISTANT, HELP_TEXT), []

    envelope = build_user_message(session_id=state.session_id, text=text)
    return _append(state, Role.USER, text), [SendEnvelope(envelope)]


# --------------------------------------------------------------------------
# Inbound frames
# --------------------------------------------------------------------------


def _apply_server_message(
    state: ConversationState, message: ServerMessage
) -> ConversationState:
    if isinstance(message, AssistantChunk):
        return replace(state, stream_buffer=state.stream_buffer + message.content)

    if isinstance(message, AssistantMessage):
        content = message.content or state.stream_buffer
        return replace(_append(state, Role.ASSISTANT, content), stream_buffer="")

    if isinstance(message, PermissionRequest):
        # A newer request replaces any outstanding one.
        return replace(state, pending_permission=message)

    if isinstance(message, SessionState):
        return replace(state, status=message.status)

    if isinstance(message, Result):
        if not message.success and message.error:
            return _append(state, Role.ERROR, message.error)
        return state

    if isinstance(message, (UnknownMessageType, MalformedMessage)):
        return _append(state, Role.ERROR, condition_message(message))

    raise TypeError(f"Unsupported server message: {message!r}")
