"""
Keyed store of remote resources.

Holds one CacheEntry per key and is the only place entries change: every
update replaces the frozen snapshot and notifies that key's listeners, so all
readers observe the same value.

Eviction: an entry lives while something retains it. When the last retainer
releases it, eviction is scheduled after a grace period; retaining again
within the grace period cancels it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from teamsync.sync.models import CacheEntry

logger = logging.getLogger(__name__)

Listener = Callable[[str, CacheEntry], None]

_UNSET: Any = object()


class CacheStore:
    def __init__(self, eviction_grace_seconds: float = 300.0):
        self._eviction_grace_seconds = eviction_grace_seconds
        self._entries: dict[str, CacheEntry] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._retainers: dict[str, int] = {}
        self._evictions: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def get(self, key: str) -> CacheEntry:
        """Return the current snapshot, or an empty entry for an unknown key."""
        return self._entries.get(key) or CacheEntry()

    def set(
        self,
        key: str,
        *,
        value: Any = _UNSET,
        error: Exception | None = _UNSET,
        is_loading: bool = _UNSET,
        fetched_at: float | None = _UNSET,
    ) -> CacheEntry:
        """Replace the fields given; unspecified fields keep their value."""
        changes = {
            name: val
            for name, val in (
                ("value", value),
                ("error", error),
                ("is_loading", is_loading),
                ("fetched_at", fetched_at),
            )
            if val is not _UNSET
        }
        created = key not in self._entries
        current = self.get(key)
        entry = replace(current, **changes)
        self._entries[key] = entry
        if created or entry != current:
            self._notify(key, entry)
        return entry

    def invalidate(self, key: str) -> bool:
        """Mark the entry stale (keeps the value for display). False if unknown."""
        if key not in self._entries:
            return False
        self.set(key, fetched_at=None)
        logger.debug("Invalidated cache key %s", key)
        return True

    def is_stale(self, key: str) -> bool:
        return self.get(key).fetched_at is None

    def evict(self, key: str) -> None:
        handle = self._evictions.pop(key, None)
        if handle is not None:
            handle.cancel()
        if self._entries.pop(key, None) is not None:
            logger.debug("Evicted cache key %s", key)

    # --- Observers ---

    def on_change(self, key: str, callback: Listener) -> Callable[[], None]:
        """Register a listener for one key; returns the unsubscribe function."""
        self._listeners.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners and callback in listeners:
                listeners.remove(callback)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    def _notify(self, key: str, entry: CacheEntry) -> None:
        for callback in list(self._listeners.get(key, ())):
            try:
                callback(key, entry)
            except Exception:
                logger.exception("Cache listener for %s failed", key)

    # --- Retention ---

    def retain(self, key: str) -> None:
        self._retainers[key] = self._retainers.get(key, 0) + 1
        handle = self._evictions.pop(key, None)
        if handle is not None:
            handle.cancel()

    def release(self, key: str) -> None:
        count = self._retainers.get(key, 0) - 1
        if count > 0:
            self._retainers[key] = count
            return
        self._retainers.pop(key, None)
        self._schedule_eviction(key)

    def retainer_count(self, key: str) -> int:
        return self._retainers.get(key, 0)

    def _schedule_eviction(self, key: str) -> None:
        if self._eviction_grace_seconds <= 0:
            self.evict(key)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.evict(key)
            return
        self._evictions[key] = loop.call_later(self._eviction_grace_seconds, self.evict, key)

    def clear(self) -> None:
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        self._entries.clear()
        self._listeners.clear()
        self._retainers.clear()
