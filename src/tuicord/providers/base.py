"""Messaging provider interface consumed by the core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from pathlib import Path

from tuicord.models import ConversationRef, Flavor, ProviderEvent, ProviderMessage, User
from tuicord.sanitize import MentionResolver


class MessagingProvider(ABC):
    """Interface implemented by all messaging backends.

    Implementations normalize their wire shapes into ``ConversationRef`` and
    ``ProviderMessage`` and raise ``tuicord.errors.ProviderError`` on failure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def user(self) -> User | None:
        """The authenticated operator, known after ``connect``."""
        ...

    @property
    @abstractmethod
    def resolver(self) -> MentionResolver:
        ...

    @abstractmethod
    async def connect(self) -> User:
        """Authenticate. Raises ProviderConnectionError on failure."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def list_conversations(self, flavor: Flavor) -> list[ConversationRef]:
        """Top-level list for the given browsing flavor."""
        ...

    @abstractmethod
    async def list_channels(self, guild_id: str) -> list[ConversationRef]:
        """Categories and text channels of a guild, in display order."""
        ...

    @abstractmethod
    async def fetch_history(self, conversation_id: str, limit: int) -> list[ProviderMessage]:
        ...

    @abstractmethod
    async def send(
        self,
        conversation_id: str,
        text: str,
        *,
        reply_to_id: str | None = None,
        nonce: str | None = None,
    ) -> ProviderMessage:
        ...

    @abstractmethod
    async def upload(
        self,
        conversation_id: str,
        path: Path,
        *,
        nonce: str | None = None,
    ) -> ProviderMessage:
        ...

    @abstractmethod
    async def edit(self, conversation_id: str, message_id: str, text: str) -> ProviderMessage:
        ...

    @abstractmethod
    async def delete(self, conversation_id: str, message_id: str) -> None:
        ...

    @abstractmethod
    async def react(self, conversation_id: str, message_id: str, emoji: str) -> None:
        ...

    @abstractmethod
    async def pin(self, conversation_id: str, message_id: str) -> None:
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[ProviderEvent]:
        """Live created/updated/deleted events until ``close``."""
        ...
