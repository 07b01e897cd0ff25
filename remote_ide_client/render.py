"""Terminal presentation of a conversation snapshot.

Rendering is a pure function of ``ConversationState`` and an immutable
``Theme``; nothing here keeps state between frames.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .protocol import PermissionRequest
from .state import ChatEntry, ConversationState, Role

ASSISTANT_LABEL = "Assistant"
USER_LABEL = "You"
STREAM_CURSOR = "▊"
TOOL_INPUT_LIMIT = 500

# Rows kept for the status bar, the prompt and spacing
_CHROME_ROWS = 5


@dataclass(frozen=True)
class Theme:
    """rich style strings used by the renderer."""

    status_bar: str = "on grey23"
    connected: str = "bold green"
    disconnected: str = "bold red"
    session: str = "white"
    server: str = "dim"
    user: str = "bold cyan"
    assistant: str = "bold magenta"
    error: str = "bold red"
    stream: str = "italic"
    permission_border: str = "yellow"
    permission_title: str = "bold yellow"
    permission_tool: str = "bold"
    prompt: str = "bold cyan"


DEFAULT_THEME = Theme()


def format_tool_input(tool_input: Any) -> str:
    """Render tool input as JSON, truncated for display."""
    if tool_input is None or tool_input == {} or tool_input == "":
        return ""
    if isinstance(tool_input, str):
        text = tool_input
    else:
        text = json.dumps(tool_input, indent=2, ensure_ascii=False)
    if len(text) > TOOL_INPUT_LIMIT:
        text = text[:TOOL_INPUT_LIMIT] + "..."
    return text


def render_status_bar(
    state: ConversationState, *, server_name: str, theme: Theme = DEFAULT_THEME
) -> RenderableType:
    """Connection indicator, session status and server name on one row."""
    if state.connected:
        indicator = Text("● Connected", style=theme.connected)
    else:
        indicator = Text("● Disconnected", style=theme.disconnected)

    bar = Table.grid(expand=True)
    bar.add_column(justify="left", ratio=1)
    bar.add_column(justify="center", ratio=1)
    bar.add_column(justify="right", ratio=1)
    bar.add_row(
        indicator,
        Text(f"Session: {state.status}", style=theme.session),
        Text(server_name, style=theme.server),
        style=theme.status_bar,
    )
    return bar


def _entry_lines(entry: ChatEntry) -> int:
    return entry.content.count("\n") + 3


def _visible_entries(entries: tuple[ChatEntry, ...], rows: int) -> list[ChatEntry]:
    """Newest entries that fit into ``rows`` (at least the newest one)."""
    visible: list[ChatEntry] = []
    used = 0
    for entry in reversed(entries):
        used += _entry_lines(entry)
        if visible and used > rows:
            break
        visible.append(entry)
    visible.reverse()
    return visible


def render_entry(entry: ChatEntry, theme: Theme = DEFAULT_THEME) -> RenderableType:
    """One chat entry: a role label followed by its content."""
    if entry.role is Role.USER:
        return Text.assemble((USER_LABEL, theme.user), "\n", entry.content, "\n")
    if entry.role is Role.ASSISTANT:
        return Text.assemble((ASSISTANT_LABEL, theme.assistant), "\n", entry.content, "\n")
    return Text(f"Error: {entry.content}\n", style=theme.error)


def render_chat(state: ConversationState, theme: Theme = DEFAULT_THEME) -> RenderableType:
    """Finished entries plus the in-progress stream buffer."""
    rows = max(state.height - _CHROME_ROWS, 1)
    parts: list[RenderableType] = [
        render_entry(entry, theme) for entry in _visible_entries(state.entries, rows)
    ]
    if state.stream_buffer:
        parts.append(
            Text.assemble(
                (ASSISTANT_LABEL, theme.assistant),
                "\n",
                (state.stream_buffer, theme.stream),
                (STREAM_CURSOR, theme.stream),
            )
        )
    return Group(*parts)


def render_permission(
    request: PermissionRequest, *, width: int, theme: Theme = DEFAULT_THEME
) -> RenderableType:
    """Boxed permission prompt with the accept/deny hint."""
    description = request.description or f"Tool {request.tool_name} wants to execute"
    body = Text()
    body.append("Tool: ")
    body.append(request.tool_name, style=theme.permission_tool)
    body.append(f"\nDescription: {description}\n")
    tool_input = format_tool_input(request.tool_input)
    if tool_input:
        body.append(f"\nInput:\n{tool_input}\n")
    body.append("\n[y] Allow  [n] Deny")

    box_width = min(max(width - 4, 40), 80)
    return Panel(
        body,
        title=Text("⚠ Permission Request", style=theme.permission_title),
        title_align="left",
        border_style=theme.permission_border,
        width=box_width,
    )


def render_conversation(
    state: ConversationState, *, server_name: str, theme: Theme = DEFAULT_THEME
) -> RenderableType:
    """Render the whole screen for ``state``."""
    if state.quitting:
        return Text("Goodbye!")

    parts: list[RenderableType] = [
        render_status_bar(state, server_name=server_name, theme=theme),
        Text(""),
        render_chat(state, theme),
    ]
    if state.pending_permission is not None:
        parts.append(render_permission(state.pending_permission, width=state.width, theme=theme))
    else:
        parts.append(Text.assemble(("> ", theme.prompt), state.draft))
    return Group(*parts)
