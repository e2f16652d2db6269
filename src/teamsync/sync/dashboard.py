"""
Team dashboard: the four team resources kept fresh, plus the tab state and
the view model derived from them.

Resources and their cache keys:

- team          -> "team"                 GET /api/teams/my-team (404 = no team)
- approvals     -> "approvals"            GET /api/leaves/pending
- analytics     -> "analytics:<teamId>"   GET /api/teams/{teamId}/leaves
- pendingUsers  -> "pendingUsers"         GET /api/users/temp-passwords

The analytics key only exists once the team has resolved; until then it is
None and nothing is fetched for it.

The dashboard follows the session: when the token changes, every
subscription, prefetch and cached resource of the previous identity is
dropped, and the resources are subscribed again if a new token is present.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Any

from teamsync.observability.metrics import SyncMetrics, create_sync_metrics
from teamsync.sync.api import TeamApiClient
from teamsync.sync.cache import CacheStore
from teamsync.sync.config import SyncConfig
from teamsync.sync.coordinator import FetchCoordinator, FetchOptions, Loader, Subscription, VisibilityMonitor
from teamsync.sync.models import (
    CacheEntry,
    MutationResult,
    PendingUsers,
    PrefetchStatus,
    PrefetchTask,
    Team,
    TeamLeaves,
    TeamMember,
    TeamStats,
)
from teamsync.sync.mutations import ANALYTICS, APPROVALS, TEAM, MutationExecutor
from teamsync.sync.prefetch import ComponentPreloader, DataPrefetcher, PreloadableComponent
from teamsync.sync.session import SessionStore
from teamsync.sync.state import (
    PageCursor,
    ResetState,
    SetActiveTab,
    SetError,
    SetFilter,
    SetLoading,
    SetPagination,
    SetPrefetchStatus,
    Tab,
    TabState,
    TabStateStore,
    ToggleModal,
)

logger = logging.getLogger(__name__)

PENDING_USERS = "pendingUsers"
RESOURCES = (TEAM, APPROVALS, ANALYTICS, PENDING_USERS)

TAB_RESOURCES: dict[Tab, tuple[str, ...]] = {
    Tab.MEMBERS: (TEAM, PENDING_USERS),
    Tab.APPROVALS: (APPROVALS, TEAM),
    Tab.ANALYTICS: (TEAM, ANALYTICS),
    Tab.PENDING: (PENDING_USERS,),
}

# Tab whose successful prefetch hides a resource's loading state.
RESOURCE_TAB: dict[str, Tab] = {
    TEAM: Tab.MEMBERS,
    APPROVALS: Tab.APPROVALS,
    ANALYTICS: Tab.ANALYTICS,
    PENDING_USERS: Tab.PENDING,
}


@dataclass(frozen=True)
class LoadingFlags:
    team: bool = False
    approvals: bool = False
    analytics: bool = False
    pending_users: bool = False

    @property
    def any(self) -> bool:
        return self.team or self.approvals or self.analytics or self.pending_users


@dataclass(frozen=True)
class TeamView:
    members: list[TeamMember] = field(default_factory=list)
    all_members: list[TeamMember] = field(default_factory=list)
    members_page: list[TeamMember] = field(default_factory=list)
    approvals: list[Any] = field(default_factory=list)
    leaves: list[dict[str, Any]] = field(default_factory=list)
    statistics: dict[str, Any] = field(default_factory=dict)
    pending_users: list[Any] = field(default_factory=list)
    team_stats: TeamStats = field(default_factory=TeamStats)
    has_team: bool = False
    is_manager: bool = False
    loading: LoadingFlags = field(default_factory=LoadingFlags)
    errors: dict[str, Exception | None] = field(default_factory=dict)


class TeamDashboard:
    def __init__(
        self,
        api: TeamApiClient,
        session: SessionStore,
        *,
        config: SyncConfig | None = None,
        store: CacheStore | None = None,
        monitor: VisibilityMonitor | None = None,
        metrics: SyncMetrics | None = None,
        components: Mapping[str, PreloadableComponent] | None = None,
    ):
        self._api = api
        self._session = session
        self._config = config or SyncConfig()
        metrics = metrics or create_sync_metrics()

        self.store = store or CacheStore(self._config.eviction_grace_seconds)
        self.coordinator = FetchCoordinator(self.store, session, monitor=monitor, metrics=metrics)
        self.preloader = ComponentPreloader(metrics)
        self.prefetcher = DataPrefetcher(metrics)
        self.state_store = TabStateStore()
        self.mutations = MutationExecutor(api, self.coordinator, self.resource_key, metrics=metrics)

        self._components = dict(components or {})
        self._subscriptions: dict[str, Subscription] = {}
        self._processing: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self._mounted = False
        self._closed = False
        self._unsubscribe_session = session.on_change(self._on_session_change)

    # --- Keys ---

    @property
    def session(self) -> SessionStore:
        return self._session

    @property
    def state(self) -> TabState:
        return self.state_store.state

    @property
    def team_id(self) -> str | None:
        team = self.store.get(TEAM).value or self.prefetcher.get_prefetched_data(TEAM)
        return team.team_id if isinstance(team, Team) else None

    def resource_key(self, name: str) -> str | None:
        if name == ANALYTICS:
            team_id = self.team_id
            return f"{ANALYTICS}:{team_id}" if team_id else None
        return name if name in RESOURCES else None

    def entry(self, name: str) -> CacheEntry:
        key = self.resource_key(name)
        return self.store.get(key) if key else CacheEntry()

    # --- Lifecycle ---

    def mount(self) -> None:
        """Subscribe the dashboard's resources. Without a token nothing is fetched."""
        if self._mounted or self._closed:
            return
        self._mounted = True
        self._subscribe_resources()

    def _subscribe_resources(self) -> None:
        cfg = self._config
        retry = {
            "retry": cfg.retry_count,
            "retry_interval_ms": cfg.retry_interval_ms,
            "retry_ceiling_ms": cfg.retry_ceiling_ms,
        }

        self._subscribe(
            TEAM,
            self._api.get_my_team,
            FetchOptions(
                refresh_interval_ms=cfg.team_refresh_ms,
                deduping_window_ms=cfg.team_deduping_ms,
                fallback=self.prefetcher.get_prefetched_data(TEAM),
                **retry,
            ),
        )
        self._subscribe(
            APPROVALS,
            self._api.get_pending_approvals,
            FetchOptions(
                refresh_interval_ms=cfg.approvals_refresh_ms,
                deduping_window_ms=cfg.deduping_ms,
                fallback=self.prefetcher.get_prefetched_data(APPROVALS),
                **retry,
            ),
        )
        self._subscribe(
            PENDING_USERS,
            self._api.get_pending_users,
            FetchOptions(
                refresh_interval_ms=cfg.pending_users_refresh_ms,
                deduping_window_ms=cfg.deduping_ms,
                fallback=self.prefetcher.get_prefetched_data(PENDING_USERS),
                **retry,
            ),
        )
        team_sub = self._subscriptions.get(TEAM)
        if team_sub is not None:
            team_sub.on_change(lambda _key, _entry: self._sync_analytics())
        self._sync_analytics()

    def _subscribe(self, name: str, loader: Loader, options: FetchOptions) -> Subscription:
        key = self.resource_key(name) if self._session.token else None
        sub = self.coordinator.subscribe(key, loader, options)
        sub.on_change(lambda _key, entry: self._record_entry(name, entry))
        self._subscriptions[name] = sub
        return sub

    def _sync_analytics(self) -> None:
        if self._closed or not self._mounted:
            return
        key = self.resource_key(ANALYTICS) if self._session.token else None
        current = self._subscriptions.get(ANALYTICS)
        if current is not None and current.key == key:
            return
        if current is not None:
            current.close()
            del self._subscriptions[ANALYTICS]
        if key is None:
            return

        team_id = self.team_id
        logger.debug("Subscribing analytics for team %s", team_id)
        self._subscribe(
            ANALYTICS,
            lambda: self._api.get_team_leaves(team_id),
            FetchOptions(
                refresh_interval_ms=self._config.analytics_refresh_ms,
                revalidate_on_focus=False,
                deduping_window_ms=self._config.deduping_ms,
                fallback=self.prefetcher.get_prefetched_data(ANALYTICS),
                retry=self._config.retry_count,
                retry_interval_ms=self._config.retry_interval_ms,
                retry_ceiling_ms=self._config.retry_ceiling_ms,
            ),
        )

    def _record_entry(self, name: str, entry: CacheEntry) -> None:
        if self._closed:
            return
        message = str(entry.error) if entry.error is not None else None
        if self.state.errors.get(name) != message:
            self.state_store.dispatch(SetError(name, message))
        self.state_store.dispatch(SetLoading(name, entry.is_loading))

    def _on_session_change(self, previous: str | None, token: str | None) -> None:
        if self._closed:
            return
        logger.info("Session changed, dropping dashboard data (signed in: %s)", bool(token))
        self.prefetcher.reset()
        for sub in list(self._subscriptions.values()):
            sub.close()
        self._subscriptions.clear()
        for key in self.store.keys():
            if key in RESOURCES or key.startswith(f"{ANALYTICS}:"):
                self.store.evict(key)
        self.state_store.dispatch(ResetState())
        if self._mounted and token:
            self._subscribe_resources()

    async def close(self) -> None:
        """Clear every timer, subscription and listener; no state changes afterwards."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_session()
        self.preloader.cleanup()
        self.prefetcher.cleanup()
        for task in self._tasks:
            task.cancel()
        for sub in list(self._subscriptions.values()):
            sub.close()
        self._subscriptions.clear()
        await self.coordinator.close()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # --- Prefetch ---

    async def prefetch_team_data(self) -> list[PrefetchTask]:
        if not self._session.token:
            return []
        delay = self._config.prefetch_delay_ms
        waiters = [
            self.prefetcher.prefetch(TEAM, self._api.get_my_team, delay),
            self.prefetcher.prefetch(APPROVALS, self._api.get_pending_approvals, delay),
            self.prefetcher.prefetch(PENDING_USERS, self._api.get_pending_users, delay),
        ]
        return list(await asyncio.gather(*waiters))

    async def prefetch_analytics_data(self) -> PrefetchTask | None:
        team_id = self.team_id
        if not self._session.token or team_id is None:
            return None
        return await self.prefetcher.prefetch(
            ANALYTICS,
            lambda: self._api.get_team_leaves(team_id),
            self._config.prefetch_delay_ms,
        )

    async def prefetch_for_tab(self, tab: Tab | str) -> PrefetchStatus:
        """Warm every resource ``tab`` needs and record the outcome in the tab state."""
        tab = Tab(tab)
        if self._closed:
            return PrefetchStatus.IDLE
        token = self._session.token
        self.state_store.dispatch(SetPrefetchStatus(tab, PrefetchStatus.LOADING))

        tasks = await self.prefetch_team_data()
        if tab is Tab.ANALYTICS:
            analytics = await self.prefetch_analytics_data()
            if analytics is not None:
                tasks.append(analytics)

        if self._closed or self._session.token != token:
            return PrefetchStatus.IDLE

        needed = [task for task in tasks if task.name in TAB_RESOURCES[tab]]
        for task in needed:
            if task.status is PrefetchStatus.SUCCESS:
                key = self.resource_key(task.name)
                if key is not None:
                    self.coordinator.prime(key, task.result)

        ok = bool(needed) and all(task.status is PrefetchStatus.SUCCESS for task in needed)
        status = PrefetchStatus.SUCCESS if ok else PrefetchStatus.ERROR
        if not ok:
            logger.warning("Prefetch for tab %s incomplete", tab.value)
        self.state_store.dispatch(SetPrefetchStatus(tab, status))
        return status

    def hover_tab(self, tab: Tab | str) -> asyncio.Task:
        """Warm a tab's component and data ahead of navigation."""
        tab = Tab(tab)
        component = self._components.get(tab.value)
        if component is not None:
            self.preloader.preload(tab.value, component.preload, self._config.preload_delay_ms)
        task = asyncio.get_running_loop().create_task(self.prefetch_for_tab(tab))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def load_component(self, tab: Tab | str) -> Any:
        """Load (or reuse) the code unit registered for ``tab``."""
        tab = Tab(tab)
        component = self._components.get(tab.value)
        if component is None:
            raise KeyError(f"No component registered for tab {tab.value!r}")
        return await component.preload()

    # --- Tab state ---

    def set_active_tab(self, tab: Tab | str) -> TabState:
        return self.state_store.dispatch(SetActiveTab(Tab(tab)))

    def toggle_modal(self, modal: str) -> TabState:
        return self.state_store.dispatch(ToggleModal(modal))

    def set_filter(self, key: str, value: Any) -> TabState:
        return self.state_store.dispatch(SetFilter(key, value))

    def set_pagination(self, key: str, page: int, page_size: int) -> TabState:
        return self.state_store.dispatch(SetPagination(key, PageCursor(page, page_size)))

    # --- View model ---

    def _value(self, name: str) -> Any:
        return self.entry(name).value

    def _is_loading(self, name: str) -> bool:
        entry = self.entry(name)
        if not entry.is_loading or entry.has_value:
            return False
        if self.state.prefetch_status.get(RESOURCE_TAB[name].value) is PrefetchStatus.SUCCESS:
            return False
        return not self.prefetcher.is_prefetched(name)

    def loading(self) -> LoadingFlags:
        return LoadingFlags(
            team=self._is_loading(TEAM),
            approvals=self._is_loading(APPROVALS),
            analytics=self._is_loading(ANALYTICS),
            pending_users=self._is_loading(PENDING_USERS),
        )

    def show_skeleton(self, tab: Tab | str) -> bool:
        tab = Tab(tab)
        if self.state.prefetch_status.get(tab.value) is PrefetchStatus.SUCCESS:
            return False
        return any(self._is_loading(name) for name in TAB_RESOURCES[tab])

    def view(self) -> TeamView:
        """Recompute the view model from the current cache entries and filters."""
        state = self.state
        team: Team | None = self._value(TEAM)
        leaves_data: TeamLeaves | None = self._value(ANALYTICS)
        pending_data: PendingUsers | None = self._value(PENDING_USERS)

        members = list(team.members) if team else []
        approvals = list(self._value(APPROVALS) or [])
        leaves = list(leaves_data.leaves) if leaves_data else []
        statistics = dict(leaves_data.statistics) if leaves_data else {}
        pending = list(pending_data.users) if pending_data else []

        member_status = state.filters.get("memberStatus", "all")
        filtered = [m for m in members if member_status == "all" or m.status == member_status]
        leave_type = state.filters.get("leaveType", "all")
        if leave_type != "all":
            leaves = [leave for leave in leaves if leave.get("leaveType") == leave_type]

        cursor = state.pagination.get("members", PageCursor(0, 50))
        start = cursor.page * cursor.page_size
        on_leave = sum(1 for m in members if m.status == "on-leave")

        return TeamView(
            members=filtered,
            all_members=members,
            members_page=filtered[start : start + cursor.page_size],
            approvals=approvals,
            leaves=leaves,
            statistics=statistics,
            pending_users=pending,
            team_stats=TeamStats(
                total_members=len(members),
                available_members=len(members) - on_leave,
                on_leave_members=on_leave,
                pending_approvals=len(approvals),
                pending_users=len(pending),
                total_leaves=int(statistics.get("totalLeaves", 0) or 0),
            ),
            has_team=team is not None,
            is_manager=self._session.is_manager,
            loading=self.loading(),
            errors={name: self.entry(name).error for name in RESOURCES},
        )

    # --- Mutations ---

    def is_processing(self, entity_id: str) -> bool:
        return self._processing.get(entity_id, 0) > 0

    async def _mutate(
        self,
        entity_id: str,
        operation: Awaitable[MutationResult],
        affected: tuple[str, ...],
    ) -> MutationResult:
        # Counted so overlapping mutations on one id keep it busy until the last settles.
        self._processing[entity_id] = self._processing.get(entity_id, 0) + 1
        try:
            result = await operation
        finally:
            remaining = self._processing.pop(entity_id) - 1
            if remaining:
                self._processing[entity_id] = remaining
        if result.success:
            for name in affected:
                self.prefetcher.invalidate(name)
        return result

    async def approve_leave(self, leave_id: str, reason: str | None = None) -> MutationResult:
        return await self._mutate(
            leave_id, self.mutations.approve(leave_id, reason), (APPROVALS, ANALYTICS)
        )

    async def reject_leave(self, leave_id: str, reason: str) -> MutationResult:
        return await self._mutate(
            leave_id, self.mutations.reject(leave_id, reason), (APPROVALS, ANALYTICS)
        )

    async def add_team_member(self, email: str) -> MutationResult:
        return await self._mutate(email, self.mutations.add_member(email), (TEAM,))

    async def remove_team_member(self, member_id: str) -> MutationResult:
        return await self._mutate(member_id, self.mutations.remove_member(member_id), (TEAM,))

    async def create_team(self, name: str, description: str | None = None) -> MutationResult:
        return await self._mutate(name, self.mutations.create_team(name, description), (TEAM,))

    # --- Manual refresh ---

    async def refresh(self, name: str) -> Any:
        key = self.resource_key(name)
        if key is None:
            return None
        return await self.coordinator.revalidate(key, force=True)

    async def refresh_team(self) -> Any:
        return await self.refresh(TEAM)

    async def refresh_approvals(self) -> Any:
        return await self.refresh(APPROVALS)

    async def refresh_leaves(self) -> Any:
        return await self.refresh(ANALYTICS)

    async def refresh_pending_users(self) -> Any:
        return await self.refresh(PENDING_USERS)
