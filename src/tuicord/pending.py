"""Correlation of locally issued sends with the ids the provider assigns."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass
class PendingSend:
    conversation_id: str
    nonce: str
    message_id: str | None = None


class PendingSendTable:
    """Consume-once records that suppress the stream echo of our own sends.

    An entry is created when a send is issued and removed the first time the
    message is observed, either through the REST response (``resolve``) or
    through the event stream (``consume_event``). Whichever comes second finds
    nothing and is a no-op, so the table never grows past the sends in flight.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PendingSend] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, conversation_id: str) -> PendingSend:
        pending = PendingSend(conversation_id=conversation_id, nonce=uuid.uuid4().hex[:16])
        self._entries[pending.nonce] = pending
        return pending

    def resolve(self, pending: PendingSend, message_id: str | None) -> bool:
        """REST side. Returns True if the stream had not consumed it yet."""
        pending.message_id = message_id
        return self._entries.pop(pending.nonce, None) is not None

    def discard(self, pending: PendingSend) -> None:
        """Forget a send that failed."""
        self._entries.pop(pending.nonce, None)

    def consume_event(
        self,
        conversation_id: str,
        message_id: str | None,
        nonce: str | None = None,
    ) -> bool:
        """Stream side. Returns True if the event confirmed a pending send."""
        if nonce and nonce in self._entries:
            entry = self._entries[nonce]
            if entry.conversation_id == conversation_id:
                entry.message_id = message_id
                del self._entries[nonce]
                logger.debug("pending.consumed", source="stream", message_id=message_id)
                return True
        if message_id is None:
            return False
        for key, entry in self._entries.items():
            if entry.conversation_id == conversation_id and entry.message_id == message_id:
                del self._entries[key]
                logger.debug("pending.consumed", source="stream", message_id=message_id)
                return True
        return False

    def clear(self) -> None:
        self._entries.clear()
