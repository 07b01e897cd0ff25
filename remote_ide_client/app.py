"""Interactive chat application.

Merges three event sources into one bounded queue and folds them one at a
time through ``machine.fold``:
- keystrokes from the terminal (prompt_toolkit raw input)
- inbound frames from the transport, one outstanding read at a time
- connection lifecycle changes and terminal resizes

Effects returned by the fold are executed here: envelopes are sent
fire-and-forget, and each ``ListenNext`` starts exactly one frame read.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
from collections import deque
from collections.abc import AsyncGenerator, Coroutine
from typing import Any

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.key_binding import KeyPress
from prompt_toolkit.keys import Keys
from rich.console import Console

from .errors import RemoteIdeClientError
from .machine import fold, initial_state
from .protocol import encode_envelope
from .render import DEFAULT_THEME, Theme, render_conversation
from .state import (
    KEY_BACKSPACE,
    KEY_ENTER,
    KEY_INTERRUPT,
    KEY_QUIT,
    ChannelClosed,
    ConnectionChanged,
    ConversationState,
    Effect,
    Event,
    FrameReceived,
    KeyPressed,
    ListenNext,
    Resized,
    SendEnvelope,
    SendFailed,
)
from .transport import RemoteIdeTransport

_LOGGER = logging.getLogger(__name__)

DEFAULT_EVENT_QUEUE_SIZE = 256

_KEY_NAMES: dict[str, str] = {
    Keys.ControlC: KEY_INTERRUPT,
    Keys.ControlD: KEY_QUIT,
    Keys.ControlM: KEY_ENTER,
    Keys.ControlJ: KEY_ENTER,
    Keys.ControlH: KEY_BACKSPACE,
    Keys.Escape: "escape",
    Keys.ControlI: "tab",
    Keys.Up: "up",
    Keys.Down: "down",
    Keys.Left: "left",
    Keys.Right: "right",
    Keys.Home: "home",
    Keys.End: "end",
    Keys.Delete: "delete",
}

_CONNECTED_STATES = {"connected": True, "reconnecting": False, "disconnected": False}


def translate_key(key_press: KeyPress) -> str | None:
    """Map a prompt_toolkit key press to a state machine key name or text.

    Returns None for keys the client has no use for.
    """
    key = key_press.key
    if key in _KEY_NAMES:
        return _KEY_NAMES[key]
    if key == Keys.BracketedPaste:
        return key_press.data or None
    if isinstance(key, Keys):
        return None
    return key


class ChatApp:
    """Runs the interaction loop for one session."""

    def __init__(
        self,
        transport: RemoteIdeTransport,
        session_id: str,
        *,
        server_name: str,
        theme: Theme = DEFAULT_THEME,
        console: Console | None = None,
        queue_size: int = DEFAULT_EVENT_QUEUE_SIZE,
    ) -> None:
        self._transport = transport
        self._server_name = server_name
        self._theme = theme
        self._console = console or Console()
        self._state = initial_state(
            session_id, width=self._console.width, height=self._console.height
        )
        self._events: asyncio.Queue[Event] = asyncio.Queue(maxsize=queue_size)
        self._frames: AsyncGenerator[str | bytes, None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._backlog: deque[Event] = deque()
        self._feeder: asyncio.Task[None] | None = None
        self._screen: Any = None

        transport.on_connection_state_changed(self._on_connection_state)

    @property
    def state(self) -> ConversationState:
        """Current conversation snapshot."""
        return self._state

    def post(self, event: Event) -> None:
        """Queue an event from a synchronous producer, preserving order.

        Events wait in a backlog drained by a single feeder task, so a full
        queue delays them without reordering them.
        """
        self._backlog.append(event)
        if self._feeder is None or self._feeder.done():
            self._feeder = self._spawn(self._feed())

    async def _feed(self) -> None:
        while self._backlog:
            await self._events.put(self._backlog.popleft())

    # -------------------------------------------------------------------------
    # Terminal wiring
    # -------------------------------------------------------------------------

    async def run(self, terminal_input: Input | None = None) -> None:
        """Take over the terminal and run until the user quits.

        The channel is closed on the way out, including when the terminal
        cannot be taken over.
        """
        loop = asyncio.get_running_loop()
        try:
            terminal_input = terminal_input or create_input()
            with terminal_input.raw_mode(), terminal_input.attach(
                lambda: self._read_keys(terminal_input)
            ):
                with self._console.screen() as screen:
                    self._screen = screen
                    self._watch_resize(loop)
                    try:
                        await self._fold_events()
                    finally:
                        self._unwatch_resize(loop)
                        self._screen = None
        finally:
            await self._transport.close()

    def _read_keys(self, terminal_input: Input) -> None:
        for key_press in terminal_input.read_keys():
            if self._state.quitting:
                return
            key = translate_key(key_press)
            if key is not None:
                self.post(KeyPressed(key))

    def _watch_resize(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            loop.add_signal_handler(signal.SIGWINCH, self._on_resize)
        except (AttributeError, NotImplementedError, RuntimeError):
            _LOGGER.debug("Terminal resize notifications unavailable")
        self._on_resize()

    def _unwatch_resize(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            loop.remove_signal_handler(signal.SIGWINCH)
        except (AttributeError, NotImplementedError, RuntimeError):
            pass

    def _on_resize(self) -> None:
        size = shutil.get_terminal_size()
        self.post(Resized(width=size.columns, height=size.lines))

    def _on_connection_state(self, state: str) -> None:
        connected = _CONNECTED_STATES.get(state)
        if connected is not None and not self._state.quitting:
            self.post(ConnectionChanged(connected=connected))

    # -------------------------------------------------------------------------
    # Event loop
    # -------------------------------------------------------------------------

    async def run_loop(self) -> None:
        """Fold events until the quit sequence begins, then close the channel."""
        try:
            await self._fold_events()
        finally:
            await self._transport.close()

    async def _fold_events(self) -> None:
        self._frames = self._transport.receive()
        try:
            self._execute([ListenNext()])
            self._draw()
            while not self._state.quitting:
                event = await self._events.get()
                self._state, effects = fold(self._state, event)
                self._execute(effects)
                self._draw()
        finally:
            await self._cancel_tasks()
            await self._frames.aclose()

    def _execute(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, SendEnvelope):
                self._spawn(self._send(effect.envelope))
            elif isinstance(effect, ListenNext):
                self._spawn(self._listen())

    def _draw(self) -> None:
        renderable = render_conversation(
            self._state, server_name=self._server_name, theme=self._theme
        )
        if self._screen is not None:
            self._screen.update(renderable)
        else:
            self._console.print(renderable)

    async def _listen(self) -> None:
        if self._frames is None:
            return
        try:
            frame = await anext(self._frames)
        except StopAsyncIteration:
            _LOGGER.info("Channel closed for good")
            await self._events.put(ChannelClosed())
            return
        await self._events.put(FrameReceived(frame))

    async def _send(self, envelope: dict[str, Any]) -> None:
        try:
            await self._transport.send(encode_envelope(envelope))
        except RemoteIdeClientError as err:
            _LOGGER.warning("Send of %s failed: %s", envelope.get("type"), err)
            await self._events.put(SendFailed(reason=str(err)))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
