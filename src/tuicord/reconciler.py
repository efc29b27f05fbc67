"""Routes provider events into the message store and the unread tracker."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from tuicord.models import ProviderEvent
from tuicord.pending import PendingSendTable
from tuicord.store import MessageStore, message_from_payload
from tuicord.unread import UnreadTracker

logger = structlog.get_logger()


class EventReconciler:
    """Applies created/updated/deleted events according to navigation state."""

    def __init__(
        self,
        *,
        store: MessageStore,
        unread: UnreadTracker,
        pending: PendingSendTable,
        active_id: Callable[[], str | None],
        own_user_id: Callable[[], str | None],
    ) -> None:
        self.store = store
        self.unread = unread
        self.pending = pending
        self._active_id = active_id
        self._own_user_id = own_user_id
        self.previews: dict[str, str] = {}

    def handle(self, event: ProviderEvent) -> bool:
        """Apply one event. Returns True when the transcript changed."""
        if event.kind == "created":
            return self._on_created(event)
        if event.kind == "updated":
            return self._on_updated(event)
        if event.kind == "deleted":
            return self._on_deleted(event)
        logger.warning("reconciler.unknown_event", kind=event.kind)
        return False

    def _is_active(self, conversation_id: str) -> bool:
        return conversation_id == self._active_id()

    def _on_created(self, event: ProviderEvent) -> bool:
        payload = event.message
        own_id = self._own_user_id()
        is_own = bool(own_id and payload.author_id == own_id)
        self.previews[event.conversation_id] = payload.content or ""

        if is_own and self.pending.consume_event(event.conversation_id, payload.id, payload.nonce):
            logger.debug("reconciler.created.confirmed_send", message_id=payload.id)
            return False

        self.unread.on_inbound_message(event.conversation_id, is_own)
        if not self._is_active(event.conversation_id):
            return False

        message = message_from_payload(payload, own_user_id=own_id, sanitizer=self.store.sanitizer)
        return self.store.append(message)

    def _on_updated(self, event: ProviderEvent) -> bool:
        payload = event.message
        if not self._is_active(event.conversation_id) or payload.id is None:
            return False
        content = payload.content
        if not (content or "").strip() and payload.system_text:
            content = payload.system_text
        if content is None:
            # partial update (embeds, flags) without a content field
            return False
        # Edits for messages we never saw are dropped, not buffered.
        return self.store.apply_edit(payload.id, content)

    def _on_deleted(self, event: ProviderEvent) -> bool:
        message_id = event.message.id
        if not self._is_active(event.conversation_id) or message_id is None:
            return False
        return self.store.apply_delete(message_id)
