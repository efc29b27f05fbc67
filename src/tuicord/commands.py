"""In-band command dispatcher.

Operator input either is plain text to send or starts with the command
prefix. The dispatcher validates arguments, calls the provider and describes
what should happen to the transcript in a ``CommandResult``; the session
applies that result. Nothing here raises to the caller.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import typer

from tuicord.errors import (
    CommandValidationError,
    PermissionDeniedError,
    ProviderError,
    TuicordError,
)
from tuicord.models import ConversationRef, Message, ProviderMessage
from tuicord.pending import PendingSendTable
from tuicord.providers.base import MessagingProvider
from tuicord.store import MessageStore, message_from_payload, system_message

logger = structlog.get_logger()

Opener = Callable[[str], Any]


@dataclass
class CommandResult:
    """Transcript changes produced by one line of operator input."""

    conversation_id: str
    appends: list[Message] = field(default_factory=list)
    edits: list[tuple[str, str]] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    provider_called: bool = False
    error: TuicordError | None = None

    def note(self, text: str) -> None:
        self.appends.append(system_message(text))

    def fail(self, error: TuicordError, text: str | None = None) -> None:
        self.error = error
        self.note(text or str(error))

    @property
    def ok(self) -> bool:
        return self.error is None


Handler = Callable[["CommandDispatcher", ConversationRef, list[str], CommandResult], Awaitable[None]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    min_args: int
    usage: str
    description: str
    handler: Handler
    rest_split: int = 0


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


class CommandDispatcher:
    """Parses operator input and turns it into provider calls."""

    def __init__(
        self,
        *,
        provider: MessagingProvider,
        store: MessageStore,
        pending: PendingSendTable,
        prefix: str = "/",
        opener: Opener | None = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.pending = pending
        self.prefix = prefix
        self.opener: Opener = opener or typer.launch
        self.commands: dict[str, CommandSpec] = {}
        for spec in _BUILTIN_COMMANDS:
            self.register(spec)

    def register(self, spec: CommandSpec) -> None:
        if spec.name in self.commands:
            logger.warning("commands.duplicate", name=spec.name, action="replacing")
        self.commands[spec.name] = spec

    @property
    def own_user_id(self) -> str | None:
        user = self.provider.user
        return user.id if user else None

    def is_command(self, line: str) -> bool:
        return line.startswith(self.prefix)

    async def dispatch(self, conversation: ConversationRef, line: str) -> CommandResult:
        result = CommandResult(conversation_id=conversation.id)
        text = (line or "").strip()
        if not text:
            return result

        try:
            if not self.is_command(text):
                await self._send_text(conversation, text, result)
                return result

            name, _, remainder = text[len(self.prefix):].partition(" ")
            name = name.lower()
            spec = self.commands.get(name)
            if spec is None:
                result.fail(
                    CommandValidationError(f"Unknown command: {name}"),
                    f"Unknown command: {name}. Use {self.prefix}help for help.",
                )
                return result

            args = self._split_args(remainder, spec)
            if len(args) < spec.min_args:
                result.fail(CommandValidationError(f"Usage: {self.prefix}{spec.usage}"))
                return result

            await spec.handler(self, conversation, args, result)
        except Exception as exc:
            logger.error("commands.unexpected_error", conversation_id=conversation.id, error=str(exc))
            result.fail(TuicordError(str(exc)), f"Error: {exc}")
        return result

    @staticmethod
    def _split_args(remainder: str, spec: CommandSpec) -> list[str]:
        remainder = remainder.strip()
        if not remainder:
            return []
        if spec.rest_split:
            return remainder.split(maxsplit=spec.rest_split)
        return [remainder]

    # -- helpers -------------------------------------------------------

    def _echo(self, sent: ProviderMessage, fallback_text: str, reply_to_id: str | None = None) -> Message:
        if not sent.content and not sent.attachments:
            sent.content = fallback_text
        if reply_to_id and not sent.reply_to_id:
            sent.reply_to_id = reply_to_id
        echo = message_from_payload(
            sent,
            own_user_id=self.own_user_id,
            sanitizer=self.store.sanitizer,
        )
        echo.is_own = True
        echo.author_id = echo.author_id or self.own_user_id
        return echo

    def _resolve_id(self, short_id: str) -> str:
        found = self.store.find_by_prefix(short_id)
        return found.id if found is not None and found.id else short_id

    def _require_own(self, short_id: str, action: str, result: CommandResult) -> Message | None:
        target = self.store.find_by_prefix(short_id)
        if target is None or target.id is None:
            result.fail(CommandValidationError(f"Message not found: {short_id}"))
            return None
        if target.is_system or target.author_id is None or target.author_id != self.own_user_id:
            result.fail(
                PermissionDeniedError(f"You can only {action} your own messages."),
            )
            logger.info("commands.permission_denied", action=action, message_id=target.id)
            return None
        return target

    def _provider_failure(
        self,
        result: CommandResult,
        exc: ProviderError,
        action: str,
        message_id: str | None = None,
    ) -> None:
        logger.warning(
            "commands.provider_failed",
            action=action,
            message_id=message_id,
            code=exc.code,
            error=str(exc),
        )
        if exc.not_found and message_id:
            result.fail(exc, f"Message not found: {message_id}")
        else:
            result.fail(exc, f"Error {action}: {exc}")

    async def _send_text(
        self,
        conversation: ConversationRef,
        text: str,
        result: CommandResult,
        reply_to_id: str | None = None,
    ) -> None:
        pending = self.pending.register(conversation.id)
        result.provider_called = True
        try:
            sent = await self.provider.send(
                conversation.id,
                text,
                reply_to_id=reply_to_id,
                nonce=pending.nonce,
            )
        except ProviderError as exc:
            self.pending.discard(pending)
            self._provider_failure(result, exc, "sending message", reply_to_id)
            return
        except BaseException:
            self.pending.discard(pending)
            raise
        self.pending.resolve(pending, sent.id)
        result.appends.append(self._echo(sent, text, reply_to_id))

    # -- handlers ------------------------------------------------------

    async def _upload(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        path = Path(_strip_quotes(args[0])).expanduser()
        if not path.is_file():
            result.fail(CommandValidationError(f"File not found: {path}"))
            return

        result.note("Uploading file...")
        pending = self.pending.register(conversation.id)
        result.provider_called = True
        try:
            sent = await self.provider.upload(conversation.id, path, nonce=pending.nonce)
        except ProviderError as exc:
            self.pending.discard(pending)
            self._provider_failure(result, exc, "uploading file")
            return
        except BaseException:
            self.pending.discard(pending)
            raise
        self.pending.resolve(pending, sent.id)
        result.appends.append(self._echo(sent, ""))

    async def _view(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        short_id = args[0]
        target = self.store.find_by_prefix(short_id, attachments_only=True)
        if target is None or target.attachment is None:
            result.fail(CommandValidationError(f"File not found. ID: {short_id}"))
            return
        try:
            self.opener(target.attachment.url)
        except Exception as exc:
            logger.warning("commands.view.open_failed", url=target.attachment.url, error=str(exc))
            result.fail(TuicordError(str(exc)), f"Error opening file: {exc}")
            return
        result.note("Opening file in browser...")

    async def _reply(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        reply_to_id = self._resolve_id(args[0])
        await self._send_text(conversation, args[1], result, reply_to_id=reply_to_id)

    async def _edit(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        target = self._require_own(args[0], "edit", result)
        if target is None or target.id is None:
            return
        result.provider_called = True
        try:
            edited = await self.provider.edit(conversation.id, target.id, args[1])
        except ProviderError as exc:
            self._provider_failure(result, exc, "editing message", target.id)
            return
        result.edits.append((target.id, edited.content if edited.content is not None else args[1]))
        result.note(f"Message edited: {target.id}")

    async def _delete(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        target = self._require_own(args[0], "delete", result)
        if target is None or target.id is None:
            return
        result.provider_called = True
        try:
            await self.provider.delete(conversation.id, target.id)
        except ProviderError as exc:
            self._provider_failure(result, exc, "deleting message", target.id)
            return
        result.deletes.append(target.id)
        result.note(f"Message deleted: {target.id}")

    async def _pin(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        message_id = self._resolve_id(args[0])
        result.provider_called = True
        try:
            await self.provider.pin(conversation.id, message_id)
        except ProviderError as exc:
            self._provider_failure(result, exc, "pinning message", message_id)
            return
        result.note(f"Message pinned: {message_id}")

    async def _react(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        message_id = self._resolve_id(args[0])
        emoji = args[1].split()[0]
        result.provider_called = True
        try:
            await self.provider.react(conversation.id, message_id, emoji)
        except ProviderError as exc:
            self._provider_failure(result, exc, "reacting to message", message_id)
            return
        result.note(f"Reacted to message {message_id} with {emoji}")

    async def _help(self, conversation: ConversationRef, args: list[str], result: CommandResult) -> None:
        lines = ["Commands:"]
        for spec in self.commands.values():
            lines.append(f"- {self.prefix}{spec.usage}: {spec.description}")
        result.note("\n".join(lines))


_BUILTIN_COMMANDS = (
    CommandSpec("upload", 1, "upload <file_path>", "Upload file", CommandDispatcher._upload),
    CommandSpec("view", 1, "view <message_id>", "Open file/sticker in browser", CommandDispatcher._view, 1),
    CommandSpec("reply", 2, "reply <message_id> <message>", "Reply to message", CommandDispatcher._reply, 1),
    CommandSpec("r", 2, "r <message_id> <message>", "Reply to message (short)", CommandDispatcher._reply, 1),
    CommandSpec("edit", 2, "edit <message_id> <new_message>", "Edit message", CommandDispatcher._edit, 1),
    CommandSpec("delete", 1, "delete <message_id>", "Delete message", CommandDispatcher._delete, 1),
    CommandSpec("pin", 1, "pin <message_id>", "Pin message", CommandDispatcher._pin, 1),
    CommandSpec("react", 2, "react <message_id> <emoji>", "React to message", CommandDispatcher._react, 1),
    CommandSpec("help", 0, "help", "Show this list", CommandDispatcher._help),
)
