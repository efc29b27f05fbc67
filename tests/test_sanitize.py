from __future__ import annotations

import pytest
from rich.text import Text

from tuicord.sanitize import (
    CODE_BLOCK_PLACEHOLDER,
    ContentSanitizer,
    MappingResolver,
    escape_markup,
    sanitize,
    truncate_markup_safe,
)


def _resolver() -> MappingResolver:
    return MappingResolver(
        users={"123": "alice"},
        roles={"7": "mods"},
        channels={"42": "general"},
    )


def test_mentions_markdown_and_newlines() -> None:
    assert sanitize("<@123> **hi** \n\n\n\nbye", _resolver()) == "@alice hi\n\nbye"


def test_unresolvable_mentions_use_placeholders() -> None:
    text = sanitize("<@999> <@&8> <#77>", _resolver())
    assert text == "@Unknown User @deleted-role #deleted-channel"


def test_nickname_role_and_channel_mentions_resolve() -> None:
    assert sanitize("<@!123> <@&7> in <#42>", _resolver()) == "@alice @mods in #general"


def test_custom_and_animated_emoji() -> None:
    assert sanitize("nice <:pog:111> <a:party:222>") == "nice :pog: :party:"


def test_html_tags_and_entities() -> None:
    assert sanitize("<b>bold</b> &amp; <i>it</i> &lt;3") == "bold & it <3"


def test_code_fence_becomes_placeholder() -> None:
    assert sanitize("look:\n```py\nprint(1)\n```\ndone") == f"look:\n{escape_markup(CODE_BLOCK_PLACEHOLDER)}\ndone"


def test_links_keep_label() -> None:
    assert sanitize("see [docs](https://example.com) now") == "see docs now"


def test_quote_heading_strike_spoiler_and_inline_code() -> None:
    raw = "# Title\n> quoted\n~~old~~ ||secret|| `code` *it* __under__"
    assert sanitize(raw) == "Title\nquoted\nold secret code it under"


def test_control_characters_dropped_but_tabs_kept() -> None:
    assert sanitize("a\x00b\x07c\td\r\ne") == "abc\td\ne"


def test_markup_is_escaped() -> None:
    text = sanitize("[bold red]pwned[/bold red]")
    assert Text.from_markup(text).plain == "[bold red]pwned[/bold red]"


def test_trailing_backslash_cannot_escape_following_markup() -> None:
    text = sanitize("path C:\\")
    # rendered inside our own markup without swallowing the closing tag
    assert Text.from_markup(f"[dim]{text}[/dim]").plain == "path C:\\"


@pytest.mark.parametrize(
    "raw",
    [
        "<@123> **hi** \n\n\n\nbye",
        "[bold]x[/bold] and \\[not] and \\\\[b]y",
        "<<b>b>nested</b>",
        "&amp;lt;b&amp;gt;",
        "****double****",
        "trailing \\",
        "```unterminated",
        "[link](<@123>)",
        "<" * 10 + "b>" + "b>" * 9,
        "&" + "amp;" * 10 + "lt;b&gt;",
        "<b <:x:1>>",
    ],
)
def test_sanitize_is_idempotent(raw: str) -> None:
    once = sanitize(raw, _resolver())
    assert sanitize(once, _resolver()) == once


def test_empty_input() -> None:
    assert sanitize(None) == ""
    assert sanitize("") == ""


def test_truncate_does_not_split_escape() -> None:
    text = escape_markup("abcd[b]")
    truncated = truncate_markup_safe(text, 5)
    assert truncated == "abcd..."
    assert Text.from_markup(truncated).plain == "abcd..."


def test_truncate_leaves_short_text_alone() -> None:
    assert truncate_markup_safe("short", 10) == "short"


def test_content_sanitizer_uses_bound_resolver() -> None:
    sanitizer = ContentSanitizer(_resolver())
    assert sanitizer("hi <@123>") == "hi @alice"


def test_deeply_nested_tags_and_entities_are_fully_stripped() -> None:
    assert sanitize("<" * 10 + "b>" + "b>" * 9) == ""
    assert sanitize("&" + "amp;" * 10 + "lt;b&gt;") == ""


def test_resolved_names_cannot_reintroduce_tokens() -> None:
    resolver = MappingResolver(users={"1": "<@1>"}, roles={"2": "&lt;b&gt;"}, channels={"3": "<"})

    text = sanitize("<@1> <@&2> <#3>", resolver)

    assert text == "@@1> @lt;bgt; #deleted-channel"
    assert sanitize(text, resolver) == text
