"""Line-mode terminal front end built on rich."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence

import structlog
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from tuicord.ui.base import InputEvent, InputMode, KeyEvent, LineEvent, Renderer, Widget

logger = structlog.get_logger()

ESC = "\x1b"
# Sentinels handed back by the reader thread
_EOF = "\x04"
_INTERRUPT = "\x03"

_LIST_KEYS = {
    "": "enter",
    "j": "j",
    "k": "k",
    "q": "q",
    "down": "down",
    "up": "up",
    ESC: "escape",
    _EOF: "C-d",
    _INTERRUPT: "C-c",
}


def parse_list_input(raw: str) -> KeyEvent:
    """Map one line typed in list mode onto a key event."""
    stripped = raw.strip()
    if stripped.startswith(ESC):
        return KeyEvent("escape", raw)
    name = _LIST_KEYS.get(stripped.lower())
    return KeyEvent(name or stripped.lower(), raw)


def parse_chat_input(raw: str) -> InputEvent:
    """Esc and Ctrl-D leave the conversation, anything else is a line to submit."""
    stripped = raw.strip()
    if stripped == _EOF:
        return KeyEvent("C-d", raw)
    if stripped == _INTERRUPT:
        return KeyEvent("C-c", raw)
    if stripped.startswith(ESC):
        return KeyEvent("escape", raw)
    return LineEvent(raw)


class ConsoleRenderer(Renderer):
    """Repaints the whole screen with rich and reads input line by line.

    Keys are typed followed by Enter: ``j``/``k`` move, an empty line
    selects, ``q`` or Esc goes back. In a conversation Esc or Ctrl-D go back.
    """

    def __init__(self, console: Console | None = None, *, transcript_height: int | None = None) -> None:
        self.console = console or Console()
        self.transcript_height = transcript_height
        self._header = ""
        self._help = ""
        self._list: list[str] = []
        self._transcript: list[str] = []
        self._focus: Widget = "list"
        self._closed = False

    def set_header(self, text: str) -> None:
        self._header = text

    def set_list_items(self, lines: Sequence[str]) -> None:
        self._list = list(lines)

    def set_transcript(self, lines: Sequence[str]) -> None:
        self._transcript = list(lines)

    def set_help(self, text: str) -> None:
        self._help = text

    def focus(self, widget: Widget) -> None:
        self._focus = widget

    def render(self) -> None:
        if self._closed:
            return
        self.console.clear()
        self.console.print(Panel(Text.from_markup(self._header), border_style="blue"))
        if self._focus == "list":
            if not self._list:
                self.console.print("[dim](nothing to show)[/dim]")
            for line in self._list:
                self._print_line(line)
        else:
            height = self.transcript_height or max(self.console.size.height - 8, 5)
            # stay scrolled to the newest lines
            for line in self._transcript[-height:]:
                self._print_line(line)
        if self._help:
            self.console.print(f"[dim]{escape(self._help)}[/dim]")

    def _print_line(self, line: str) -> None:
        try:
            self.console.print(line, highlight=False)
        except Exception as exc:
            logger.warning("ui.console.markup_error", error=str(exc))
            self.console.print(Text(line))

    async def read_input(self, mode: InputMode) -> InputEvent:
        prompt = "> " if mode == "chat" else ""
        raw = await self._read_line(prompt)
        if mode == "chat":
            return parse_chat_input(raw)
        return parse_list_input(raw)

    async def _read_line(self, prompt: str) -> str:
        # A daemon thread so a pending read never blocks interpreter exit.
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def deliver(value: str) -> None:
            if not future.done():
                future.set_result(value)

        def worker() -> None:
            try:
                value = self.console.input(prompt)
            except EOFError:
                value = _EOF
            except KeyboardInterrupt:
                value = _INTERRUPT
            loop.call_soon_threadsafe(deliver, value)

        threading.Thread(target=worker, name="tuicord-input", daemon=True).start()
        return await future

    def close(self) -> None:
        self._closed = True
