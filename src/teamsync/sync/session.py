"""
Session state consulted by the data layer.

The token is re-read on every request so a mid-session rotation is honored
without rebuilding clients, and every in-flight fetch compares the token it
started with against the current one before touching the cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from teamsync.sync.models import UserProfile

logger = logging.getLogger(__name__)

MANAGER_ROLES = frozenset({"manager", "admin"})

SessionListener = Callable[[str | None, str | None], None]


class SessionGuard(Protocol):
    @property
    def token(self) -> str | None: ...

    def invalidate(self, reason: str) -> None: ...


class SessionStore:
    """In-memory identity store: token, current user, change listeners."""

    def __init__(self, token: str | None = None, user: UserProfile | None = None):
        self._token = token
        self._user = user
        self._listeners: list[SessionListener] = []

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def user(self) -> UserProfile | None:
        return self._user

    @property
    def is_manager(self) -> bool:
        return self._user is not None and self._user.role in MANAGER_ROLES

    def login(self, token: str, user: UserProfile | None = None) -> None:
        self._replace(token, user)

    def set_user(self, user: UserProfile | None) -> None:
        self._user = user

    def logout(self) -> None:
        self._replace(None, None)
        logger.info("Session logged out")

    def invalidate(self, reason: str) -> None:
        if self._token is None:
            return
        logger.warning("Session invalidated: %s", reason)
        self._replace(None, None)

    def on_change(self, callback: SessionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _replace(self, token: str | None, user: UserProfile | None) -> None:
        previous = self._token
        self._token = token
        self._user = user
        if previous == token:
            return
        for listener in list(self._listeners):
            try:
                listener(previous, token)
            except Exception:
                logger.exception("Session listener failed")
