"""Per-conversation unread counters."""

from __future__ import annotations

from collections import defaultdict


class UnreadTracker:
    """Counts inbound messages from others in conversations not on screen."""

    def __init__(self) -> None:
        self._counts: defaultdict[str, int] = defaultdict(int)
        self._active_id: str | None = None

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def on_inbound_message(self, conversation_id: str, is_own_author: bool) -> bool:
        """Returns True when a counter changed."""
        if is_own_author or conversation_id == self._active_id:
            return False
        self._counts[conversation_id] += 1
        return True

    def activate(self, conversation_id: str) -> None:
        self._active_id = conversation_id
        self._counts.pop(conversation_id, None)

    def deactivate(self) -> None:
        self._active_id = None

    def count(self, conversation_id: str) -> int:
        return self._counts.get(conversation_id, 0)

    def label(self, conversation_id: str) -> str:
        count = self.count(conversation_id)
        return f" ({count} new)" if count > 0 else ""
