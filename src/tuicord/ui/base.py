"""Rendering surface interface consumed by the session."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

InputMode = Literal["list", "chat"]
Widget = Literal["list", "transcript", "input"]


@dataclass(frozen=True)
class KeyEvent:
    """A key press in list navigation, named like ``j``, ``enter``, ``escape``."""

    name: str
    raw: str = ""


@dataclass(frozen=True)
class LineEvent:
    """A line submitted from the chat input widget."""

    text: str


InputEvent = KeyEvent | LineEvent


class Renderer(ABC):
    """Interface implemented by terminal front ends."""

    @abstractmethod
    def set_header(self, text: str) -> None:
        ...

    @abstractmethod
    def set_list_items(self, lines: Sequence[str]) -> None:
        ...

    @abstractmethod
    def set_transcript(self, lines: Sequence[str]) -> None:
        ...

    @abstractmethod
    def set_help(self, text: str) -> None:
        ...

    @abstractmethod
    def focus(self, widget: Widget) -> None:
        ...

    @abstractmethod
    def render(self) -> None:
        ...

    @abstractmethod
    async def read_input(self, mode: InputMode) -> InputEvent:
        """Wait for the next key (list mode) or submitted line (chat mode)."""
        ...

    def close(self) -> None:
        """Release the terminal. Optional."""
