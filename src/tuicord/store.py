"""Message store for the active conversation.

Holds the ordered transcript, owns id based deduplication, applies edits and
deletes in place and projects the transcript into display lines.
"""

from __future__ import annotations

import bisect
import time
from collections.abc import Callable, Iterator
from datetime import datetime

import structlog
from rich.markup import escape

from tuicord.models import (
    SYSTEM_AUTHOR,
    UNKNOWN_AUTHOR,
    Message,
    ProviderMessage,
)
from tuicord.sanitize import ContentSanitizer, truncate_markup_safe

logger = structlog.get_logger()

REPLY_PREVIEW_CHARS = 30
EMPTY_PLACEHOLDER = "(empty message)"
MEDIA_PLACEHOLDER = "[Media]"
DELETED_MARKER = "[message deleted]"
TIME_PLACEHOLDER = "--:--"

Sanitizer = Callable[[str | None], str]


def now_ms() -> int:
    return int(time.time() * 1000)


def message_from_payload(
    payload: ProviderMessage,
    *,
    own_user_id: str | None,
    sanitizer: Sanitizer,
) -> Message:
    """Normalize a provider payload into a transcript entry.

    Missing fields fall back to defaults instead of raising.
    """
    attachment = payload.attachments[0] if payload.attachments else None
    raw = payload.content or ""
    if not raw.strip() and payload.system_text and not payload.sticker_name:
        raw = payload.system_text

    timestamp = payload.timestamp_ms
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        timestamp = now_ms()

    author_id = payload.author_id or None
    return Message(
        id=payload.id or None,
        author_id=author_id,
        author_name=(payload.author_name or "").strip() or UNKNOWN_AUTHOR,
        raw_content=raw,
        rendered_content=sanitizer(raw),
        timestamp_ms=timestamp,
        is_own=bool(own_user_id and author_id == own_user_id),
        is_attachment=attachment is not None,
        attachment=attachment,
        reply_to_id=payload.reply_to_id or None,
        sticker_name=payload.sticker_name,
    )


def system_message(text: str, *, timestamp_ms: int | None = None) -> Message:
    """Local-only entry authored by the client itself."""
    return Message(
        id=None,
        author_name=SYSTEM_AUTHOR,
        raw_content=text,
        rendered_content=escape(text),
        timestamp_ms=timestamp_ms if timestamp_ms is not None else now_ms(),
        is_system=True,
    )


def format_time(timestamp_ms: int) -> str:
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M")
    except (OverflowError, OSError, ValueError, TypeError):
        return TIME_PLACEHOLDER


class MessageStore:
    """Ordered, deduplicated transcript of the active conversation."""

    def __init__(self, sanitizer: Sanitizer | None = None) -> None:
        self.sanitizer: Sanitizer = sanitizer or ContentSanitizer()
        self._messages: list[Message] = []
        self._timestamps: list[int] = []
        self._by_id: dict[str, Message] = {}
        self._deleted: set[str] = set()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def reset(self) -> None:
        """Drop every message, the id index and the deleted set."""
        self._messages.clear()
        self._timestamps.clear()
        self._by_id.clear()
        self._deleted.clear()

    def get(self, message_id: str) -> Message | None:
        return self._by_id.get(message_id)

    def append(self, message: Message) -> bool:
        """Insert in timestamp order. Returns False for a known id."""
        if message.id is not None and message.id in self._by_id:
            logger.debug("store.append.duplicate", message_id=message.id)
            return False

        if not isinstance(message.timestamp_ms, int):
            message.timestamp_ms = now_ms()

        # bisect_right keeps arrival order among equal timestamps
        index = bisect.bisect_right(self._timestamps, message.timestamp_ms)
        self._messages.insert(index, message)
        self._timestamps.insert(index, message.timestamp_ms)
        if message.id is not None:
            self._by_id[message.id] = message
        return True

    def apply_edit(self, message_id: str, new_content: str | None) -> bool:
        message = self._by_id.get(message_id)
        if message is None:
            logger.debug("store.edit.unknown_id", message_id=message_id)
            return False
        message.raw_content = new_content or ""
        message.rendered_content = self.sanitizer(message.raw_content)
        return True

    def apply_delete(self, message_id: str) -> bool:
        message = self._by_id.get(message_id)
        if message is None:
            logger.debug("store.delete.unknown_id", message_id=message_id)
            return False
        message.deleted = True
        self._deleted.add(message_id)
        return True

    def is_deleted(self, message_id: str) -> bool:
        return message_id in self._deleted

    def resolve_reply(self, message_id: str | None) -> Message | None:
        if not message_id:
            return None
        return self._by_id.get(message_id)

    def find_by_prefix(self, short_id: str, *, attachments_only: bool = False) -> Message | None:
        """First message in store order whose id starts with ``short_id``."""
        if not short_id:
            return None
        for message in self._messages:
            if message.id is None or not message.id.startswith(short_id):
                continue
            if attachments_only and message.attachment is None:
                continue
            return message
        return None

    def reply_preview(self, message_id: str | None) -> str | None:
        target = self.resolve_reply(message_id)
        if target is None:
            return None
        text = target.rendered_content
        if not text and (target.is_attachment or target.sticker_name):
            text = escape(MEDIA_PLACEHOLDER)
        return f"{escape(target.author_name)}: {truncate_markup_safe(text, REPLY_PREVIEW_CHARS)}"

    def render(self) -> list[str]:
        """Project the transcript into rich-markup display lines."""
        lines: list[str] = []
        for message in self._messages:
            try:
                lines.extend(self._render_message(message))
            except Exception as exc:
                logger.warning("store.render.failed", message_id=message.id, error=str(exc))
                lines.extend([f"[red]{escape('[unrenderable message]')}[/red]", ""])
        return lines

    def _render_message(self, message: Message) -> list[str]:
        lines: list[str] = []
        preview = self.reply_preview(message.reply_to_id)
        if preview is not None:
            lines.append(f"[yellow]↪ Replying to {preview}[/yellow]")

        if message.is_system:
            prefix = f"[red]{SYSTEM_AUTHOR}[/red]"
        elif message.is_own:
            prefix = "[green]You[/green]"
        else:
            prefix = f"[cyan]{escape(message.author_name or UNKNOWN_AUTHOR)}[/cyan]"
        lines.append(f"{prefix} {escape('[' + format_time(message.timestamp_ms) + ']')}")

        body = self._body(message)
        if message.deleted:
            body += f" [red]{escape(DELETED_MARKER)}[/red]"
        if message.id and not message.is_system:
            body += f" [blue]({escape(message.id)})[/blue]"
        lines.extend(body.split("\n"))
        lines.append("")
        return lines

    @staticmethod
    def _body(message: Message) -> str:
        if message.sticker_name:
            return f"[blue]{escape('[Sticker: ' + message.sticker_name + ']')}[/blue]"
        if message.is_attachment:
            attachment = message.attachment
            if attachment is not None and attachment.filename:
                label = f"[blue]{escape('[File: ' + attachment.filename + ']')}[/blue]"
            elif attachment is not None and attachment.url:
                label = f"[blue]{escape('[Image]')}[/blue]"
            else:
                label = f"[blue]{escape('[File]')}[/blue]"
            if message.rendered_content:
                return f"{message.rendered_content}\n{label}"
            return label
        if message.rendered_content.strip():
            return message.rendered_content
        return f"[dim]{EMPTY_PLACEHOLDER}[/dim]"
