from __future__ import annotations

import io

from rich.console import Console

from tuicord.ui.base import KeyEvent, LineEvent
from tuicord.ui.console import ConsoleRenderer, parse_chat_input, parse_list_input


def test_list_keys() -> None:
    assert parse_list_input("j") == KeyEvent("j", "j")
    assert parse_list_input("K\n").name == "k"
    assert parse_list_input("").name == "enter"
    assert parse_list_input("q").name == "q"
    assert parse_list_input("\x1b").name == "escape"
    assert parse_list_input("\x04").name == "C-d"


def test_chat_input() -> None:
    assert parse_chat_input("hello there") == LineEvent("hello there")
    assert parse_chat_input("/edit 12 fixed") == LineEvent("/edit 12 fixed")
    assert parse_chat_input("\x1b").name == "escape"
    assert parse_chat_input("\x04").name == "C-d"


def _renderer(height: int = 3) -> tuple[ConsoleRenderer, io.StringIO]:
    out = io.StringIO()
    console = Console(file=out, width=80, force_terminal=False, color_system=None)
    return ConsoleRenderer(console, transcript_height=height), out


def test_list_view_renders_items_and_help() -> None:
    renderer, out = _renderer()
    renderer.set_header("tuicord / DM's")
    renderer.set_list_items(["> alice", "  bob"])
    renderer.set_help("j/k: navigate")
    renderer.focus("list")
    renderer.render()

    text = out.getvalue()
    assert "tuicord / DM's" in text
    assert "alice" in text and "bob" in text
    assert "j/k: navigate" in text


def test_transcript_view_keeps_newest_lines() -> None:
    renderer, out = _renderer(height=2)
    renderer.set_transcript(["one", "two", "three"])
    renderer.focus("input")
    renderer.render()

    text = out.getvalue()
    assert "one" not in text
    assert "two" in text and "three" in text


def test_broken_markup_line_is_printed_plain() -> None:
    renderer, out = _renderer()
    renderer.set_list_items(["[/nope] oops"])
    renderer.render()

    assert "[/nope] oops" in out.getvalue()


def test_closed_renderer_does_not_draw() -> None:
    renderer, out = _renderer()
    renderer.close()
    renderer.render()
    assert out.getvalue() == ""
