from __future__ import annotations

from teamsync.sync.api import TeamApiClient
from teamsync.sync.cache import CacheStore
from teamsync.sync.config import SyncConfig
from teamsync.sync.coordinator import FetchCoordinator, FetchOptions, Subscription, VisibilityMonitor
from teamsync.sync.dashboard import TeamDashboard, TeamView
from teamsync.sync.errors import (
    ApiError,
    AuthorizationError,
    InvalidInputError,
    SyncError,
    TransportError,
)
from teamsync.sync.models import CacheEntry, MutationResult, PrefetchStatus, PrefetchTask, TeamStats
from teamsync.sync.mutations import MutationExecutor
from teamsync.sync.prefetch import ComponentPreloader, DataPrefetcher, Debouncer, PreloadableComponent
from teamsync.sync.session import SessionGuard, SessionStore
from teamsync.sync.state import Tab, TabState, TabStateStore, reduce

__all__ = [
    "CacheStore",
    "CacheEntry",
    "FetchCoordinator",
    "FetchOptions",
    "Subscription",
    "VisibilityMonitor",
    "Debouncer",
    "ComponentPreloader",
    "DataPrefetcher",
    "PreloadableComponent",
    "PrefetchStatus",
    "PrefetchTask",
    "MutationExecutor",
    "MutationResult",
    "Tab",
    "TabState",
    "TabStateStore",
    "reduce",
    "TeamDashboard",
    "TeamView",
    "TeamStats",
    "TeamApiClient",
    "SessionGuard",
    "SessionStore",
    "SyncConfig",
    "SyncError",
    "TransportError",
    "ApiError",
    "AuthorizationError",
    "InvalidInputError",
]
