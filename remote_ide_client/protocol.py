"""Wire protocol for the Remote IDE realtime channel.

Every frame is one JSON object discriminated by its ``type`` field.

Server -> client frames decode into exactly one variant of ``ServerMessage``.
Frames that cannot be understood are not errors: they decode into the
``UnknownMessageType`` or ``MalformedMessage`` variants so the read loop can
report them and keep going.

Client -> server envelopes are plain dicts built by the ``build_*`` helpers.
Each builder fixes its own ``type`` and carries the active session id.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeAlias

# Server -> client discriminators
ASSISTANT_CHUNK = "assistant_chunk"
ASSISTANT_MESSAGE = "assistant_message"
PERMISSION_REQUEST = "permission_request"
SESSION_STATE = "session_state"
RESULT = "result"

# Client -> server discriminators
USER_MESSAGE = "user_message"
PERMISSION_RESPONSE = "permission_response"
INTERRUPT = "interrupt"
RESET_SESSION = "reset_session"


# --------------------------------------------------------------------------
# Server -> client variants
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class AssistantChunk:
    """Incremental piece of assistant text for the in-progress turn."""

    session_id: str
    content: str
    seq: int = 0


@dataclass(frozen=True)
class AssistantMessage:
    """Turn-finalizing assistant message.

    An empty ``content`` means "use what was streamed so far".
    """

    session_id: str
    content: str
    seq: int = 0


@dataclass(frozen=True)
class PermissionRequest:
    """Server asks the user to allow or deny a tool invocation."""

    session_id: str
    request_id: str
    tool_name: str
    tool_input: Any = field(default_factory=lambda: {})
    description: str = ""


@dataclass(frozen=True)
class SessionState:
    """Server-reported session status (ready, busy, error)."""

    session_id: str
    status: str
    message_count: int = 0


@dataclass(frozen=True)
class Result:
    """Outcome of a turn."""

    session_id: str
    success: bool
    error: str = ""
    seq: int = 0


@dataclass(frozen=True)
class UnknownMessageType:
    """Frame carried a ``type`` this client does not know."""

    type_name: str
    raw: str | bytes


@dataclass(frozen=True)
class MalformedMessage:
    """Frame could not be parsed into any variant."""

    reason: str
    raw: str | bytes


ServerMessage: TypeAlias = (
    AssistantChunk
    | AssistantMessage
    | PermissionRequest
    | SessionState
    | Result
    | UnknownMessageType
    | MalformedMessage
)


class _FieldError(ValueError):
    """A required field is missing or has the wrong type."""


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise _FieldError(f"field '{key}' must be a string")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _FieldError(f"field '{key}' must be a string")
    return value


def _optional_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None:
        return 0
    # bool is a subclass of int and is never a valid counter
    if isinstance(value, bool) or not isinstance(value, int):
        raise _FieldError(f"field '{key}' must be an integer")
    return value


def _require_bool(payload: dict[str, Any], key: str) -> bool:
    value = payload.get(key)
    if not isinstance(value, bool):
        raise _FieldError(f"field '{key}' must be a boolean")
    return value


def _decode_chunk(payload: dict[str, Any]) -> AssistantChunk:
    return AssistantChunk(
        session_id=_optional_str(payload, "sessionId"),
        content=_require_str(payload, "content"),
        seq=_optional_int(payload, "seq"),
    )


def _decode_assistant_message(payload: dict[str, Any]) -> AssistantMessage:
    return AssistantMessage(
        session_id=_optional_str(payload, "sessionId"),
        content=_optional_str(payload, "content"),
        seq=_optional_int(payload, "seq"),
    )


def _decode_permission_request(payload: dict[str, Any]) -> PermissionRequest:
    tool_input = payload.get("toolInput")
    return PermissionRequest(
        session_id=_optional_str(payload, "sessionId"),
        request_id=_require_str(payload, "requestId"),
        tool_name=_require_str(payload, "toolName"),
        tool_input={} if tool_input is None else tool_input,
        description=_optional_str(payload, "description"),
    )


def _decode_session_state(payload: dict[str, Any]) -> SessionState:
    return SessionState(
        session_id=_optional_str(payload, "sessionId"),
        status=_require_str(payload, "status"),
        message_count=_optional_int(payload, "messageCount"),
    )


def _decode_result(payload: dict[str, Any]) -> Result:
    return Result(
        session_id=_optional_str(payload, "sessionId"),
        success=_require_bool(payload, "success"),
        error=_optional_str(payload, "error"),
        seq=_optional_int(payload, "seq"),
    )


_DECODERS: dict[str, Callable[[dict[str, Any]], ServerMessage]] = {
    ASSISTANT_CHUNK: _decode_chunk,
    ASSISTANT_MESSAGE: _decode_assistant_message,
    PERMISSION_REQUEST: _decode_permission_request,
    SESSION_STATE: _decode_session_state,
    RESULT: _decode_result,
}


def decode_server_message(data: str | bytes) -> ServerMessage:
    """Decode one inbound frame.

    Never raises: undecodable input yields ``MalformedMessage`` and an
    unrecognized discriminator yields ``UnknownMessageType``.
    """
    try:
        payload = json.loads(data)
    except (ValueError, TypeError) as err:
        return MalformedMessage(reason=f"invalid JSON ({err})", raw=data)

    if not isinstance(payload, dict):
        return MalformedMessage(reason="frame is not a JSON object", raw=data)

    msg_type = payload.get("type")
    if not isinstance(msg_type, str):
        return MalformedMessage(reason="missing message type", raw=data)

    decoder = _DECODERS.get(msg_type)
    if decoder is None:
        return UnknownMessageType(type_name=msg_type, raw=data)

    try:
        return decoder(payload)
    except _FieldError as err:
        return MalformedMessage(reason=f"{msg_type}: {err}", raw=data)


def condition_message(message: UnknownMessageType | MalformedMessage) -> str:
    """Return the user-visible text for a decode condition."""
    if isinstance(message, UnknownMessageType):
        return f"unknown message type: {message.type_name}"
    return f"malformed message: {message.reason}"


# --------------------------------------------------------------------------
# Client -> server envelopes
# --------------------------------------------------------------------------


def build_user_message(*, session_id: str, text: str) -> dict[str, Any]:
    """Construct a user_message envelope."""
    return {"type": USER_MESSAGE, "sessionId": session_id, "text": text}


def build_permission_response(
    *, session_id: str, request_id: str, allowed: bool
) -> dict[str, Any]:
    """Construct a permission_response envelope answering a PermissionRequest."""
    return {
        "type": PERMISSION_RESPONSE,
        "sessionId": session_id,
        "requestId": request_id,
        "allowed": allowed,
    }


def build_interrupt(*, session_id: str) -> dict[str, Any]:
    """Construct an interrupt envelope (best-effort hint to stop the turn)."""
    return {"type": INTERRUPT, "sessionId": session_id}


def build_reset_session(*, session_id: str) -> dict[str, Any]:
    """Construct a reset_session envelope."""
    return {"type": RESET_SESSION, "sessionId": session_id}


def encode_envelope(envelope: dict[str, Any]) -> str:
    """Serialize an outbound envelope to compact JSON text."""
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)
