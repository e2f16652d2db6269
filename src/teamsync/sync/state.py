"""
Tab/UI state for the Team dashboard.

State changes only through ``reduce(state, action)``; ``TabStateStore`` is the
single dispatcher that owns the current state for one dashboard mount.
Nested maps are replaced wholesale (top-level spread, no deep merge).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from teamsync.sync.models import PrefetchStatus

logger = logging.getLogger(__name__)


class Tab(str, Enum):
    MEMBERS = "members"
    APPROVALS = "approvals"
    ANALYTICS = "analytics"
    PENDING = "pending"


@dataclass(frozen=True)
class PageCursor:
    page: int = 0
    page_size: int = 20


def _default_modals() -> dict[str, bool]:
    return {"addMember": False, "createTeam": False, "editMember": False}


def _default_filters() -> dict[str, Any]:
    # memberStatus: all | available | on-leave; leaveType: all | EL | SL | CL
    return {"memberStatus": "all", "leaveType": "all", "dateRange": "all"}


def _default_pagination() -> dict[str, PageCursor]:
    return {"members": PageCursor(0, 50), "leaves": PageCursor(0, 20)}


def _default_prefetch_status() -> dict[str, PrefetchStatus]:
    return {tab.value: PrefetchStatus.IDLE for tab in Tab}


@dataclass(frozen=True)
class TabState:
    active_tab: Tab = Tab.MEMBERS
    modals: dict[str, bool] = field(default_factory=_default_modals)
    filters: dict[str, Any] = field(default_factory=_default_filters)
    pagination: dict[str, PageCursor] = field(default_factory=_default_pagination)
    prefetch_status: dict[str, PrefetchStatus] = field(default_factory=_default_prefetch_status)
    loading: dict[str, bool] = field(default_factory=dict)
    errors: dict[str, str | None] = field(default_factory=dict)


# --- Actions ---


@dataclass(frozen=True)
class SetActiveTab:
    tab: Tab


@dataclass(frozen=True)
class ToggleModal:
    modal: str


@dataclass(frozen=True)
class SetFilter:
    key: str
    value: Any


@dataclass(frozen=True)
class SetPagination:
    key: str
    cursor: PageCursor


@dataclass(frozen=True)
class SetPrefetchStatus:
    tab: Tab
    status: PrefetchStatus


@dataclass(frozen=True)
class SetLoading:
    key: str
    loading: bool


@dataclass(frozen=True)
class SetError:
    key: str
    message: str | None


@dataclass(frozen=True)
class ResetState:
    state: TabState = field(default_factory=TabState)


Action = (
    SetActiveTab
    | ToggleModal
    | SetFilter
    | SetPagination
    | SetPrefetchStatus
    | SetLoading
    | SetError
    | ResetState
)


def reduce(state: TabState, action: Action) -> TabState:
    """Pure transition function; unknown actions return ``state`` unchanged."""
    if isinstance(action, SetActiveTab):
        return replace(state, active_tab=Tab(action.tab))
    if isinstance(action, ToggleModal):
        modals = {**state.modals, action.modal: not state.modals.get(action.modal, False)}
        return replace(state, modals=modals)
    if isinstance(action, SetFilter):
        return replace(state, filters={**state.filters, action.key: action.value})
    if isinstance(action, SetPagination):
        return replace(state, pagination={**state.pagination, action.key: action.cursor})
    if isinstance(action, SetPrefetchStatus):
        tab = Tab(action.tab).value
        return replace(state, prefetch_status={**state.prefetch_status, tab: action.status})
    if isinstance(action, SetLoading):
        return replace(state, loading={**state.loading, action.key: action.loading})
    if isinstance(action, SetError):
        return replace(state, errors={**state.errors, action.key: action.message})
    if isinstance(action, ResetState):
        return action.state
    logger.debug("Ignoring unknown action %r", action)
    return state


StateListener = Callable[[TabState, TabState], None]


class TabStateStore:
    """Owns the dashboard's TabState; all writes go through ``dispatch``."""

    def __init__(self, initial: TabState | None = None):
        self._state = initial or TabState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> TabState:
        return self._state

    def dispatch(self, action: Action) -> TabState:
        previous = self._state
        self._state = reduce(previous, action)
        if self._state != previous:
            for listener in list(self._listeners):
                listener(previous, self._state)
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
