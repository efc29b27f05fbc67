"""Content sanitization pipeline.

Remote and operator text passes through here before it reaches the
renderer. The pipeline runs in a fixed order:

1. strip HTML-like tags and unescape HTML entities
2. strip markdown (fences become ``[Code Block]``, links keep their label)
3. resolve user, role and channel mention tokens
4. resolve custom and animated emoji tokens to ``:name:``
5. collapse runs of 3+ newlines to exactly 2
6. drop control characters (newline and tab survive) and trailing blanks
7. escape rich markup triggers so remote text cannot inject styling

Steps 1-6 are repeated until the text stops changing, which keeps
``sanitize(sanitize(x)) == sanitize(x)`` for nested input such as
``<<b>b>`` or ``&amp;lt;``. Resolved names never contain ``<`` or ``&``, so
every pass either shortens the text or removes a token opener and the loop
always ends. Step 7 only escapes a tag opener preceded by an even run of
backslashes, so escaped output is left untouched on a second pass.
"""

from __future__ import annotations

import html
import re
from collections.abc import Mapping
from typing import Protocol

CODE_BLOCK_PLACEHOLDER = "[Code Block]"
UNKNOWN_USER = "Unknown User"
DELETED_ROLE = "deleted-role"
DELETED_CHANNEL = "deleted-channel"
ELLIPSIS = "..."

# Discord tokens (<@1>, <#1>, <:x:1>, <a:x:1>) are not tags.
_HTML_TAG = re.compile(r"</?(?!a:)[A-Za-z][A-Za-z0-9-]*(?:\s[^<>]*)?/?>")

_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_BOLD = re.compile(r"\*\*([^\n]+?)\*\*")
_UNDERLINE = re.compile(r"__([^\n]+?)__")
_ITALIC_STAR = re.compile(r"\*([^\n*]+)\*")
_ITALIC_UNDERSCORE = re.compile(r"(?<!\w)_([^\n_]+)_(?!\w)")
_STRIKE = re.compile(r"~~([^\n]+?)~~")
_SPOILER = re.compile(r"\|\|([^\n]+?)\|\|")
_INLINE_CODE = re.compile(r"`([^`\n]*)`")
_QUOTE = re.compile(r"^(?:>>>|>) ", re.MULTILINE)
_HEADING = re.compile(r"^#{1,6} ", re.MULTILINE)
_LINK = re.compile(r"\[([^\]\n]+)\]\([^)\n]+\)")

_USER_MENTION = re.compile(r"<@!?(\d+)>")
_ROLE_MENTION = re.compile(r"<@&(\d+)>")
_CHANNEL_MENTION = re.compile(r"<#(\d+)>")
_CUSTOM_EMOJI = re.compile(r"<a?:(\w+):\d+>")

_NEWLINE_RUN = re.compile(r"\n{3,}")
_CONTROL = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")
_TRAILING_BLANKS = re.compile(r"[ \t]+$", re.MULTILINE)

# Same shape as rich.markup's tag pattern.
_MARKUP_TAG = re.compile(r"(\\*)(\[[a-z#/@][^\[]*?\])")

_INERT_NAME = str.maketrans("", "", "<&")


class MentionResolver(Protocol):
    """Maps ids found in mention tokens to display names."""

    def user_name(self, user_id: str) -> str | None: ...

    def role_name(self, role_id: str) -> str | None: ...

    def channel_name(self, channel_id: str) -> str | None: ...


class MappingResolver:
    """Resolver backed by plain dictionaries."""

    def __init__(
        self,
        users: Mapping[str, str] | None = None,
        roles: Mapping[str, str] | None = None,
        channels: Mapping[str, str] | None = None,
    ) -> None:
        self.users: dict[str, str] = dict(users or {})
        self.roles: dict[str, str] = dict(roles or {})
        self.channels: dict[str, str] = dict(channels or {})

    def user_name(self, user_id: str) -> str | None:
        return self.users.get(user_id)

    def role_name(self, role_id: str) -> str | None:
        return self.roles.get(role_id)

    def channel_name(self, channel_id: str) -> str | None:
        return self.channels.get(channel_id)


def _strip_html(text: str) -> str:
    text = _HTML_TAG.sub("", text)
    return html.unescape(text).replace("\xa0", " ")


def _strip_markdown(text: str) -> str:
    text = _CODE_FENCE.sub(CODE_BLOCK_PLACEHOLDER, text)
    text = _BOLD.sub(r"\1", text)
    text = _UNDERLINE.sub(r"\1", text)
    text = _ITALIC_STAR.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE.sub(r"\1", text)
    text = _STRIKE.sub(r"\1", text)
    text = _SPOILER.sub(r"\1", text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _QUOTE.sub("", text)
    text = _HEADING.sub("", text)
    return _LINK.sub(r"\1", text)


def _inert(name: str | None, fallback: str) -> str:
    return (name or "").translate(_INERT_NAME) or fallback


def _resolve_mentions(text: str, resolver: MentionResolver | None) -> str:
    def user(match: re.Match[str]) -> str:
        name = resolver.user_name(match.group(1)) if resolver else None
        return f"@{_inert(name, UNKNOWN_USER)}"

    def role(match: re.Match[str]) -> str:
        name = resolver.role_name(match.group(1)) if resolver else None
        return f"@{_inert(name, DELETED_ROLE)}"

    def channel(match: re.Match[str]) -> str:
        name = resolver.channel_name(match.group(1)) if resolver else None
        return f"#{_inert(name, DELETED_CHANNEL)}"

    text = _ROLE_MENTION.sub(role, text)
    text = _USER_MENTION.sub(user, text)
    return _CHANNEL_MENTION.sub(channel, text)


def _resolve_emoji(text: str) -> str:
    return _CUSTOM_EMOJI.sub(r":\1:", text)


def _collapse_newlines(text: str) -> str:
    return _NEWLINE_RUN.sub("\n\n", text)


def _strip_control(text: str) -> str:
    text = text.replace("\r\n", "\n")
    text = _CONTROL.sub("", text)
    return _TRAILING_BLANKS.sub("", text).strip()


def escape_markup(text: str) -> str:
    """Escape rich markup tags; already escaped tags are left alone."""

    def escape(match: re.Match[str]) -> str:
        backslashes, tag = match.groups()
        if len(backslashes) % 2:
            return match.group(0)
        return f"{backslashes}\\{tag}"

    text = _MARKUP_TAG.sub(escape, text)
    trailing = len(text) - len(text.rstrip("\\"))
    if trailing % 2:
        text += "\\"
    return text


def _clean_pass(text: str, resolver: MentionResolver | None) -> str:
    text = _strip_html(text)
    text = _strip_markdown(text)
    text = _resolve_mentions(text, resolver)
    text = _resolve_emoji(text)
    text = _collapse_newlines(text)
    return _strip_control(text)


def sanitize(raw_text: str | None, resolver: MentionResolver | None = None) -> str:
    """Turn raw provider or operator text into renderer-safe text."""
    if not raw_text:
        return ""
    text = raw_text
    while True:
        cleaned = _clean_pass(text, resolver)
        if cleaned == text:
            break
        text = cleaned
    return escape_markup(text)


def truncate_markup_safe(text: str, budget: int) -> str:
    """Cut sanitized text to ``budget`` characters without splitting an escape."""
    if len(text) <= budget:
        return text
    return text[:budget].rstrip("\\") + ELLIPSIS


class ContentSanitizer:
    """The sanitize pipeline bound to one resolver."""

    def __init__(self, resolver: MentionResolver | None = None) -> None:
        self.resolver = resolver

    def __call__(self, raw_text: str | None) -> str:
        return sanitize(raw_text, self.resolver)
