"""Core domain types: conversations, messages and provider events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

EventKind = Literal["created", "updated", "deleted"]
Flavor = Literal["chat", "dm", "server"]

SYSTEM_AUTHOR = "System"
UNKNOWN_AUTHOR = "Unknown"


class ConversationKind(str, Enum):
    """Normalized conversation kind, decided once by the provider adapter."""

    DIRECT = "direct"
    GROUP = "group"
    GUILD = "guild"
    GUILD_CHANNEL = "guild_channel"
    CATEGORY = "category"


@dataclass(frozen=True)
class ConversationRef:
    """An entry of a conversation list. Immutable once produced."""

    id: str
    name: str
    kind: ConversationKind
    parent_id: str | None = None
    position: int = 0
    preview: str | None = None

    @property
    def enterable(self) -> bool:
        return self.kind in (
            ConversationKind.DIRECT,
            ConversationKind.GROUP,
            ConversationKind.GUILD_CHANNEL,
        )

    @property
    def is_container(self) -> bool:
        return self.kind is ConversationKind.GUILD


@dataclass(frozen=True)
class User:
    """The authenticated operator."""

    id: str
    username: str
    global_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.global_name or self.username


@dataclass(frozen=True)
class Attachment:
    url: str
    filename: str | None = None


@dataclass
class ProviderMessage:
    """Message payload as normalized by a provider adapter."""

    id: str | None
    conversation_id: str
    author_id: str | None = None
    author_name: str | None = None
    content: str | None = None
    timestamp_ms: int | None = None
    attachments: list[Attachment] = field(default_factory=list)
    reply_to_id: str | None = None
    nonce: str | None = None
    sticker_name: str | None = None
    system_text: str | None = None


@dataclass
class ProviderEvent:
    """One item of the provider's event stream."""

    kind: EventKind
    conversation_id: str
    message: ProviderMessage


@dataclass
class Message:
    """A transcript entry held by the message store."""

    id: str | None
    author_name: str
    raw_content: str
    rendered_content: str
    timestamp_ms: int
    author_id: str | None = None
    is_own: bool = False
    is_attachment: bool = False
    attachment: Attachment | None = None
    reply_to_id: str | None = None
    deleted: bool = False
    is_system: bool = False
    sticker_name: str | None = None
