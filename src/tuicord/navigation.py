"""Three-level navigation state machine.

``BROWSING_TOP`` lists conversations (or guilds in the server flavor),
``BROWSING_SUB`` lists a guild's channels and ``ACTIVE`` shows one
conversation. The machine only tracks state; loading lists and history is
the session's job, driven by the transitions returned here.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

import structlog

from tuicord.models import ConversationKind, ConversationRef, Flavor

logger = structlog.get_logger()

TransitionKind = Literal["none", "open_sub", "close_sub", "activate", "deactivate", "exit"]


class NavState(str, Enum):
    BROWSING_TOP = "browsing_top"
    BROWSING_SUB = "browsing_sub"
    ACTIVE = "active"


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    target: ConversationRef | None = None
    token: int | None = None

    @property
    def changed(self) -> bool:
        return self.kind != "none"


NO_TRANSITION = Transition("none")


@dataclass
class ListLevel:
    """Items of one list level and the selection within it."""

    items: list[ConversationRef] = field(default_factory=list)
    selected: int = 0

    def replace(self, items: Sequence[ConversationRef]) -> None:
        self.items = list(items)
        self.clamp()

    def clamp(self) -> None:
        if not self.items:
            self.selected = 0
        else:
            self.selected = min(max(self.selected, 0), len(self.items) - 1)

    @property
    def current(self) -> ConversationRef | None:
        if 0 <= self.selected < len(self.items):
            return self.items[self.selected]
        return None


class Navigator:
    """Selection state, level transitions and history-load tickets."""

    def __init__(self, flavor: Flavor = "chat") -> None:
        self.flavor: Flavor = flavor
        self.state = NavState.BROWSING_TOP
        self.top = ListLevel()
        self.sub = ListLevel()
        self._chain: list[ConversationRef] = []
        self._return_state = NavState.BROWSING_TOP
        self._load_token = 0

    # -- queries -------------------------------------------------------

    @property
    def active(self) -> ConversationRef | None:
        if self.state is NavState.ACTIVE and self._chain:
            return self._chain[-1]
        return None

    @property
    def active_id(self) -> str | None:
        active = self.active
        return active.id if active else None

    @property
    def container(self) -> ConversationRef | None:
        """The guild whose channels are listed, if any."""
        if self._chain and self._chain[0].is_container:
            return self._chain[0]
        return None

    @property
    def chain(self) -> tuple[ConversationRef, ...]:
        return tuple(self._chain)

    @property
    def level(self) -> ListLevel | None:
        if self.state is NavState.BROWSING_TOP:
            return self.top
        if self.state is NavState.BROWSING_SUB:
            return self.sub
        return None

    def is_current(self, conversation_id: str, token: int) -> bool:
        """Whether a history load issued with ``token`` may still apply."""
        return (
            self.state is NavState.ACTIVE
            and self.active_id == conversation_id
            and token == self._load_token
        )

    # -- list mutation -------------------------------------------------

    def set_top_items(self, items: Sequence[ConversationRef]) -> None:
        self.top.replace(items)

    def set_sub_items(self, items: Sequence[ConversationRef]) -> None:
        self.sub.replace(items)

    # -- input ---------------------------------------------------------

    def next(self) -> bool:
        level = self.level
        if level is None or level.selected >= len(level.items) - 1:
            return False
        level.selected += 1
        return True

    def previous(self) -> bool:
        level = self.level
        if level is None or level.selected <= 0:
            return False
        level.selected -= 1
        return True

    def select(self) -> Transition:
        level = self.level
        item = level.current if level is not None else None
        if item is None:
            return NO_TRANSITION

        if self.state is NavState.BROWSING_TOP:
            if item.is_container:
                self._chain = [item]
                self.sub.replace([])
                self.sub.selected = 0
                self.state = NavState.BROWSING_SUB
                logger.debug("navigation.open_sub", container_id=item.id)
                return Transition("open_sub", item)
            if item.enterable:
                return self._activate(item)
            return NO_TRANSITION

        # BROWSING_SUB: categories are headers, not destinations
        if item.kind is ConversationKind.CATEGORY or not item.enterable:
            return NO_TRANSITION
        return self._activate(item)

    def back(self) -> Transition:
        if self.state is NavState.ACTIVE:
            left = self._chain.pop() if self._chain else None
            self.state = self._return_state
            logger.debug("navigation.deactivate", conversation_id=left.id if left else None)
            return Transition("deactivate", left)
        if self.state is NavState.BROWSING_SUB:
            container = self._chain[0] if self._chain else None
            self._chain = []
            self.sub.replace([])
            self.state = NavState.BROWSING_TOP
            return Transition("close_sub", container)
        return Transition("exit")

    def _activate(self, item: ConversationRef) -> Transition:
        self._return_state = self.state
        self._chain.append(item)
        self.state = NavState.ACTIVE
        self._load_token += 1
        logger.debug("navigation.activate", conversation_id=item.id, token=self._load_token)
        return Transition("activate", item, self._load_token)
