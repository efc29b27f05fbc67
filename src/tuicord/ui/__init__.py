"""Terminal rendering surfaces."""

from tuicord.ui.base import InputEvent, KeyEvent, LineEvent, Renderer
from tuicord.ui.console import ConsoleRenderer

__all__ = [
    "ConsoleRenderer",
    "InputEvent",
    "KeyEvent",
    "LineEvent",
    "Renderer",
]
