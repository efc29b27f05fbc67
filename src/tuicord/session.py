"""Session actor.

A ``Session`` owns the message store, unread tracker, pending-send table and
navigator for one authenticated connection. Provider events, operator input
and the results of background work (history loads, channel lists, command
dispatches) all arrive as actions on one queue and are applied by a single
actor task, so state is never mutated by two writers at once. Provider calls
run in their own tasks and only post their results back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

import structlog
from rich.markup import escape

from tuicord.commands import CommandDispatcher, CommandResult, Opener
from tuicord.errors import ProviderError
from tuicord.models import ConversationKind, ConversationRef, Flavor, ProviderEvent, ProviderMessage
from tuicord.navigation import Navigator, NavState, Transition
from tuicord.pending import PendingSendTable
from tuicord.providers.base import MessagingProvider
from tuicord.reconciler import EventReconciler
from tuicord.sanitize import ContentSanitizer, truncate_markup_safe
from tuicord.store import MessageStore, message_from_payload, system_message
from tuicord.ui.base import InputEvent, KeyEvent, LineEvent, Renderer
from tuicord.unread import UnreadTracker

logger = structlog.get_logger()

LIST_PREVIEW_CHARS = 50

_FLAVOR_TITLES = {"chat": "Chat", "dm": "DM's", "server": "Servers"}
_LIST_HELP = "j/k: navigate, Enter: select, Esc/q: {back}"
_CHAT_HELP = "Esc: back, {prefix}help: commands, {prefix}reply <id> <msg>, {prefix}edit <id> <msg>, {prefix}upload <path>"

_NEXT_KEYS = {"j", "down"}
_PREVIOUS_KEYS = {"k", "up"}
_SELECT_KEYS = {"enter", "return"}
_BACK_KEYS = {"escape", "q"}
_CHAT_BACK_KEYS = {"escape", "C-d"}


@dataclass
class _EventAction:
    event: ProviderEvent


@dataclass
class _InputAction:
    event: InputEvent
    done: asyncio.Event | None = None


@dataclass
class _HistoryLoaded:
    conversation_id: str
    token: int
    payloads: list[ProviderMessage] = field(default_factory=list)
    error: Exception | None = None


@dataclass
class _ChannelsLoaded:
    container_id: str
    items: list[ConversationRef] = field(default_factory=list)
    error: Exception | None = None


@dataclass
class _CommandCompleted:
    result: CommandResult


@dataclass
class _Refresh:
    status: str | None = None


@dataclass
class _Stop:
    pass


Action = _EventAction | _InputAction | _HistoryLoaded | _ChannelsLoaded | _CommandCompleted | _Refresh | _Stop


class Session:
    """Owns the conversation view-model for one connection."""

    def __init__(
        self,
        *,
        provider: MessagingProvider,
        renderer: Renderer,
        flavor: Flavor = "chat",
        history_limit: int = 50,
        command_prefix: str = "/",
        opener: Opener | None = None,
    ) -> None:
        self.provider = provider
        self.renderer = renderer
        self.flavor: Flavor = flavor
        self.history_limit = history_limit
        self.command_prefix = command_prefix

        self.sanitizer = ContentSanitizer(provider.resolver)
        self.store = MessageStore(self.sanitizer)
        self.unread = UnreadTracker()
        self.pending = PendingSendTable()
        self.navigator = Navigator(flavor)
        self.dispatcher = CommandDispatcher(
            provider=provider,
            store=self.store,
            pending=self.pending,
            prefix=command_prefix,
            opener=opener,
        )
        self.reconciler = EventReconciler(
            store=self.store,
            unread=self.unread,
            pending=self.pending,
            active_id=lambda: self.navigator.active_id,
            own_user_id=self._own_user_id,
        )
        self.key_handlers = {
            NavState.BROWSING_TOP: self._on_list_key,
            NavState.BROWSING_SUB: self._on_list_key,
            NavState.ACTIVE: self._on_chat_key,
        }

        self.status: str | None = None
        self._queue: asyncio.Queue[Action] = asyncio.Queue()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._closed = False

    # -- lifecycle -----------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Load the top list and process actions until the operator exits."""
        self._running = True
        try:
            await self.load_conversations()
            self.refresh()
            self._spawn(self._pump_events(), name="session-event-pump")
            self._spawn(self._read_input(), name="session-input")
            while self._running:
                action = await self._queue.get()
                self._handle(action)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        self._running = False
        self._closed = True
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("session.task.shutdown_error", task=task.get_name(), error=str(exc))
        self._tasks.clear()
        self.pending.clear()
        try:
            await self.provider.close()
        except Exception as exc:
            logger.warning("session.provider.close_failed", error=str(exc))
        self.renderer.close()
        logger.info("session.stopped")

    async def load_conversations(self) -> None:
        try:
            items = await self.provider.list_conversations(self.flavor)
        except ProviderError as exc:
            logger.error("session.conversations.load_failed", error=str(exc))
            self.status = f"Error loading conversations: {exc}"
            items = []
        self.navigator.set_top_items(items)
        logger.info("session.conversations.loaded", flavor=self.flavor, count=len(items))

    # -- queue ---------------------------------------------------------

    def post(self, action: Action) -> None:
        self._queue.put_nowait(action)

    async def drain(self) -> None:
        """Apply every queued action, waiting for in-flight background work."""
        while True:
            while not self._queue.empty():
                self._handle(self._queue.get_nowait())
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _handle(self, action: Action) -> None:
        changed = True
        if isinstance(action, _EventAction):
            changed = self.apply_event(action.event)
        elif isinstance(action, _InputAction):
            try:
                self.handle_input(action.event)
            finally:
                if action.done is not None:
                    action.done.set()
        elif isinstance(action, _HistoryLoaded):
            changed = self._apply_history(action)
        elif isinstance(action, _ChannelsLoaded):
            changed = self._apply_channels(action)
        elif isinstance(action, _CommandCompleted):
            changed = self.apply_command_result(action.result)
        elif isinstance(action, _Refresh):
            if action.status is not None:
                self.status = action.status
        elif isinstance(action, _Stop):
            self._running = False
            changed = False
        if changed and not self._closed:
            self.refresh()

    # -- background tasks ----------------------------------------------

    async def _pump_events(self) -> None:
        try:
            async for event in self.provider.events():
                self.post(_EventAction(event))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("session.events.stream_failed", error=str(exc))
            self.post(_Refresh(status=f"Disconnected: {exc}"))

    async def _read_input(self) -> None:
        while self._running:
            mode = "chat" if self.navigator.state is NavState.ACTIVE else "list"
            event = await self.renderer.read_input(mode)
            done = asyncio.Event()
            self.post(_InputAction(event, done))
            await done.wait()

    def _start_history_load(self, target: ConversationRef, token: int) -> None:
        async def load() -> None:
            try:
                payloads = await self.provider.fetch_history(target.id, self.history_limit)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("session.history.load_failed", conversation_id=target.id, error=str(exc))
                self.post(_HistoryLoaded(target.id, token, error=exc))
                return
            self.post(_HistoryLoaded(target.id, token, payloads=list(payloads)))

        self._spawn(load(), name=f"history-{target.id}")

    def _start_channel_load(self, container: ConversationRef) -> None:
        async def load() -> None:
            try:
                items = await self.provider.list_channels(container.id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("session.channels.load_failed", guild_id=container.id, error=str(exc))
                self.post(_ChannelsLoaded(container.id, error=exc))
                return
            self.post(_ChannelsLoaded(container.id, items=list(items)))

        self._spawn(load(), name=f"channels-{container.id}")

    def submit(self, line: str) -> asyncio.Task[Any] | None:
        """Dispatch one line in the active conversation without blocking input."""
        target = self.navigator.active
        if target is None or not line.strip():
            return None

        async def run() -> None:
            result = await self.dispatcher.dispatch(target, line)
            self.post(_CommandCompleted(result))

        return self._spawn(run(), name=f"command-{target.id}")

    # -- state changes (actor only) ------------------------------------

    def apply_event(self, event: ProviderEvent) -> bool:
        changed = self.reconciler.handle(event)
        # list annotations move even when the transcript does not
        return changed or self.navigator.state is not NavState.ACTIVE

    def handle_input(self, event: InputEvent) -> None:
        if isinstance(event, LineEvent):
            if self.navigator.state is NavState.ACTIVE:
                self.submit(event.text)
            return
        handler = self.key_handlers[self.navigator.state]
        handler(event)

    def _on_list_key(self, key: KeyEvent) -> None:
        if key.name == "C-c":
            self._exit()
        elif key.name in _NEXT_KEYS:
            self.navigator.next()
        elif key.name in _PREVIOUS_KEYS:
            self.navigator.previous()
        elif key.name in _SELECT_KEYS:
            self._apply_transition(self.navigator.select())
        elif key.name in _BACK_KEYS:
            self._apply_transition(self.navigator.back())

    def _on_chat_key(self, key: KeyEvent) -> None:
        if key.name == "C-c":
            self._exit()
        elif key.name in _CHAT_BACK_KEYS:
            self._apply_transition(self.navigator.back())

    def _apply_transition(self, transition: Transition) -> None:
        if transition.kind == "activate" and transition.target is not None and transition.token is not None:
            target = transition.target
            self.unread.activate(target.id)
            self.store.reset()
            self.renderer.focus("input")
            logger.info("session.conversation.activated", conversation_id=target.id, name=target.name)
            self._start_history_load(target, transition.token)
        elif transition.kind == "deactivate":
            self.unread.deactivate()
            self.renderer.focus("list")
        elif transition.kind == "open_sub" and transition.target is not None:
            self.status = None
            self._start_channel_load(transition.target)
        elif transition.kind == "close_sub":
            self.status = None
        elif transition.kind == "exit":
            self._exit()

    def _exit(self) -> None:
        logger.info("session.exit_requested")
        self._running = False
        self.post(_Stop())

    def _apply_history(self, loaded: _HistoryLoaded) -> bool:
        if not self.navigator.is_current(loaded.conversation_id, loaded.token):
            logger.info(
                "session.history.stale",
                conversation_id=loaded.conversation_id,
                token=loaded.token,
            )
            return False
        if loaded.error is not None:
            self.store.append(system_message(f"Error loading messages: {loaded.error}"))
            return True
        own_id = self._own_user_id()
        for payload in loaded.payloads:
            self.store.append(message_from_payload(payload, own_user_id=own_id, sanitizer=self.sanitizer))
        logger.info(
            "session.history.loaded",
            conversation_id=loaded.conversation_id,
            count=len(loaded.payloads),
        )
        return True

    def _apply_channels(self, loaded: _ChannelsLoaded) -> bool:
        container = self.navigator.container
        if (
            self.navigator.state is not NavState.BROWSING_SUB
            or container is None
            or container.id != loaded.container_id
        ):
            logger.info("session.channels.stale", guild_id=loaded.container_id)
            return False
        if loaded.error is not None:
            self.status = f"Error loading channels: {loaded.error}"
            return True
        self.navigator.set_sub_items(loaded.items)
        return True

    def apply_command_result(self, result: CommandResult) -> bool:
        if result.conversation_id != self.navigator.active_id:
            logger.info(
                "session.command.result_discarded",
                conversation_id=result.conversation_id,
                appends=len(result.appends),
            )
            return False
        for message in result.appends:
            self.store.append(message)
        for message_id, content in result.edits:
            self.store.apply_edit(message_id, content)
        for message_id in result.deletes:
            self.store.apply_delete(message_id)
        return True

    # -- rendering -----------------------------------------------------

    def _own_user_id(self) -> str | None:
        user = self.provider.user
        return user.id if user else None

    def header(self) -> str:
        parts = [f"tuicord [green](• Live)[/green] / {_FLAVOR_TITLES.get(self.flavor, self.flavor)}"]
        user = self.provider.user
        if user is not None:
            parts.append(f"as {escape(user.display_name)}")
        if self.navigator.chain:
            parts.append(" > ".join(escape(ref.name) for ref in self.navigator.chain))
        text = " | ".join(parts)
        if self.status:
            text += f"\n[red]{escape(self.status)}[/red]"
        return text

    def list_lines(self) -> list[str]:
        level = self.navigator.level
        if level is None:
            return []
        lines = []
        for index, ref in enumerate(level.items):
            prefix = "[yellow]>[/yellow] " if index == level.selected else "  "
            lines.append(f"{prefix}{self._list_label(ref)}")
        return lines

    def _list_label(self, ref: ConversationRef) -> str:
        if ref.kind is ConversationKind.CATEGORY:
            return f"[bold]📁 {escape(ref.name)}[/bold]"
        name = escape(ref.name)
        if ref.kind is ConversationKind.GROUP:
            name = f"[blue]Group[/blue]: {name}"
        elif ref.kind is ConversationKind.GUILD_CHANNEL and self.navigator.state is NavState.BROWSING_SUB:
            name = f"  # {name}"
        raw_preview = self.reconciler.previews.get(ref.id, ref.preview)
        label = name
        if raw_preview:
            preview = truncate_markup_safe(self.sanitizer(raw_preview).replace("\n", " "), LIST_PREVIEW_CHARS)
            if preview:
                label += f" | [dim]{preview}[/dim]"
        unread = self.unread.label(ref.id)
        if unread:
            label += f"[red]{unread}[/red]"
        return label

    def refresh(self) -> None:
        """Push current state to the renderer."""
        self.renderer.set_header(self.header())
        if self.navigator.state is NavState.ACTIVE:
            self.renderer.set_transcript(self.store.render())
            self.renderer.set_help(_CHAT_HELP.format(prefix=self.command_prefix))
            self.renderer.focus("input")
        else:
            self.renderer.set_list_items(self.list_lines())
            back = "quit" if self.navigator.state is NavState.BROWSING_TOP else "back"
            self.renderer.set_help(_LIST_HELP.format(back=back))
            self.renderer.focus("list")
        self.renderer.render()
