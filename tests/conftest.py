from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

import tuicord.config as config_module
from tuicord.models import Attachment, ConversationRef, Flavor, ProviderEvent, ProviderMessage, User
from tuicord.providers.base import MessagingProvider
from tuicord.sanitize import MappingResolver
from tuicord.ui.base import InputEvent, InputMode, Renderer, Widget


class FakeProvider(MessagingProvider):
    """In-memory provider that records every call it receives."""

    def __init__(self) -> None:
        self._user: User | None = User(id="me", username="me", global_name="Me")
        self._resolver = MappingResolver(users={"123": "alice"})
        self.conversations: dict[str, list[ConversationRef]] = {}
        self.channels: dict[str, list[ConversationRef]] = {}
        self.history: dict[str, list[ProviderMessage] | Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.send_error: Exception | None = None
        self.edit_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.stream_error: Exception | None = None
        self.calls: list[tuple] = []
        self.closed = False
        self._events: asyncio.Queue[ProviderEvent | None] = asyncio.Queue()
        self._next_id = 0

    @property
    def name(self) -> str:
        return "fake"

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def resolver(self) -> MappingResolver:
        return self._resolver

    async def connect(self) -> User:
        assert self._user is not None
        return self._user

    async def close(self) -> None:
        self.closed = True
        self._events.put_nowait(None)

    async def list_conversations(self, flavor: Flavor) -> list[ConversationRef]:
        return list(self.conversations.get(flavor, []))

    async def list_channels(self, guild_id: str) -> list[ConversationRef]:
        gate = self.gates.get(guild_id)
        if gate is not None:
            await gate.wait()
        return list(self.channels.get(guild_id, []))

    async def fetch_history(self, conversation_id: str, limit: int) -> list[ProviderMessage]:
        self.calls.append(("fetch_history", conversation_id, limit))
        gate = self.gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        history = self.history.get(conversation_id, [])
        if isinstance(history, Exception):
            raise history
        return list(history)

    def _new_id(self) -> str:
        self._next_id += 1
        return f"M{self._next_id}"

    async def send(
        self,
        conversation_id: str,
        text: str,
        *,
        reply_to_id: str | None = None,
        nonce: str | None = None,
    ) -> ProviderMessage:
        self.calls.append(("send", conversation_id, text, reply_to_id, nonce))
        if self.send_error is not None:
            raise self.send_error
        return ProviderMessage(
            id=self._new_id(),
            conversation_id=conversation_id,
            author_id="me",
            author_name="Me (me)",
            content=text,
            timestamp_ms=1_700_000_100_000,
            reply_to_id=reply_to_id,
            nonce=nonce,
        )

    async def upload(self, conversation_id: str, path: Path, *, nonce: str | None = None) -> ProviderMessage:
        self.calls.append(("upload", conversation_id, path, nonce))
        return ProviderMessage(
            id=self._new_id(),
            conversation_id=conversation_id,
            author_id="me",
            author_name="Me (me)",
            content="",
            timestamp_ms=1_700_000_100_000,
            attachments=[Attachment(url=f"https://cdn.example/{path.name}", filename=path.name)],
            nonce=nonce,
        )

    async def edit(self, conversation_id: str, message_id: str, text: str) -> ProviderMessage:
        self.calls.append(("edit", conversation_id, message_id, text))
        if self.edit_error is not None:
            raise self.edit_error
        return ProviderMessage(id=message_id, conversation_id=conversation_id, content=text)

    async def delete(self, conversation_id: str, message_id: str) -> None:
        self.calls.append(("delete", conversation_id, message_id))
        if self.delete_error is not None:
            raise self.delete_error

    async def react(self, conversation_id: str, message_id: str, emoji: str) -> None:
        self.calls.append(("react", conversation_id, message_id, emoji))

    async def pin(self, conversation_id: str, message_id: str) -> None:
        self.calls.append(("pin", conversation_id, message_id))

    def push(self, event: ProviderEvent) -> None:
        self._events.put_nowait(event)

    async def events(self) -> AsyncIterator[ProviderEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                if self.stream_error is not None:
                    raise self.stream_error
                return
            yield event

    def provider_calls(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


class FakeRenderer(Renderer):
    """Keeps whatever the session pushed, reads nothing."""

    def __init__(self, inputs: Sequence[InputEvent] = ()) -> None:
        self.header = ""
        self.list_items: list[str] = []
        self.transcript: list[str] = []
        self.help = ""
        self.focused: Widget = "list"
        self.renders = 0
        self.closed = False
        self._inputs = list(inputs)

    def set_header(self, text: str) -> None:
        self.header = text

    def set_list_items(self, lines: Sequence[str]) -> None:
        self.list_items = list(lines)

    def set_transcript(self, lines: Sequence[str]) -> None:
        self.transcript = list(lines)

    def set_help(self, text: str) -> None:
        self.help = text

    def focus(self, widget: Widget) -> None:
        self.focused = widget

    def render(self) -> None:
        self.renders += 1

    async def read_input(self, mode: InputMode) -> InputEvent:
        if self._inputs:
            return self._inputs.pop(0)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path) -> None:
    """Keep the user's env, .env and yaml files out of every test."""
    for name in ("TUICORD_TOKEN", "DISCORD_USER_TOKEN", "TUICORD_HISTORY_LIMIT", "TUICORD_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TUICORD_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "_config", None)
