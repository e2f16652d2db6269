"""
Fetch coordination on top of the CacheStore.

Each subscribed key gets one registration that owns its loader, its polling
task and its in-flight request. Revalidations for a key are collapsed while a
request is in flight and for ``deduping_window_ms`` after one started; a
forced revalidation (manual refresh, post-mutation refetch) bypasses the
window and supersedes older in-flight requests.

Every request captures the session token it started under. If the token has
changed by the time the loader resolves, the response is dropped and only
the loading flag is cleared. Without a token nothing is fetched at all.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, replace
from typing import Any

from teamsync.observability.metrics import SyncMetrics, create_sync_metrics
from teamsync.observability.tracing import traced_cache_operation
from teamsync.sync.cache import CacheStore, Listener
from teamsync.sync.errors import AuthorizationError
from teamsync.sync.models import CacheEntry
from teamsync.sync.session import SessionGuard

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class FetchOptions:
    refresh_interval_ms: int | None = None
    refresh_when_hidden: bool = False
    revalidate_on_focus: bool = True
    revalidate_on_mount: bool = True
    deduping_window_ms: int = 2_000
    fallback: Any = None
    retry: int = 3
    retry_interval_ms: int = 5_000
    retry_ceiling_ms: int = 20_000


def _retry_delay(attempt: int, options: FetchOptions) -> float:
    """Delay in seconds before retry ``attempt`` (0-indexed), capped at the ceiling."""
    delay_ms = min(options.retry_ceiling_ms, options.retry_interval_ms * (2**attempt))
    return delay_ms / 1000


class VisibilityMonitor:
    """One shared page-visibility signal; hosts report transitions here."""

    def __init__(self, visible: bool = True):
        self._visible = visible
        self._listeners: list[Callable[[], None]] = []

    @property
    def visible(self) -> bool:
        return self._visible

    def set_visible(self, visible: bool) -> None:
        became_visible = visible and not self._visible
        self._visible = visible
        if not became_visible:
            return
        for listener in list(self._listeners):
            listener()

    def add_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


@dataclass
class _Registration:
    key: str
    loader: Loader
    options: FetchOptions
    subscribers: int = 0
    poll_task: asyncio.Task | None = None
    inflight: asyncio.Task | None = None
    started_at: float | None = None
    seq: int = 0
    floor: int = 0
    exhausted: bool = False


class Subscription:
    """A subscriber's handle on one key. A None key is inert: no request, no timer."""

    def __init__(self, coordinator: FetchCoordinator, key: str | None):
        self._coordinator = coordinator
        self._key = key
        self._unsubscribers: list[Callable[[], None]] = []
        self._closed = key is None

    @property
    def key(self) -> str | None:
        return self._key

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def entry(self) -> CacheEntry:
        if self._key is None:
            return CacheEntry()
        return self._coordinator.store.get(self._key)

    @property
    def value(self) -> Any:
        return self.entry.value

    @property
    def error(self) -> Exception | None:
        return self.entry.error

    @property
    def is_loading(self) -> bool:
        return self.entry.is_loading

    async def refresh(self) -> Any:
        if self._key is None:
            return None
        return await self._coordinator.revalidate(self._key, force=True)

    def on_change(self, callback: Listener) -> Callable[[], None]:
        if self._key is None:
            return lambda: None
        unsubscribe = self._coordinator.store.on_change(self._key, callback)
        self._unsubscribers.append(unsubscribe)
        return unsubscribe

    def set_refresh_interval(self, refresh_interval_ms: int | None) -> None:
        if self._key is not None and not self._closed:
            self._coordinator.set_refresh_interval(self._key, refresh_interval_ms)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._coordinator._unsubscribe(self._key)  # type: ignore[arg-type]


class FetchCoordinator:
    """Serves keyed loaders from the CacheStore with polling, focus revalidation,
    request deduplication and bounded retry.

    Must be used from inside a running event loop.
    """

    def __init__(
        self,
        store: CacheStore,
        session: SessionGuard,
        *,
        monitor: VisibilityMonitor | None = None,
        metrics: SyncMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._session = session
        self._monitor = monitor or VisibilityMonitor()
        self._metrics = metrics or create_sync_metrics()
        self._clock = clock
        self._registrations: dict[str, _Registration] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self._remove_visibility_listener = self._monitor.add_listener(self._on_visible)

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def monitor(self) -> VisibilityMonitor:
        return self._monitor

    @property
    def closed(self) -> bool:
        return self._closed

    def is_registered(self, key: str) -> bool:
        return key in self._registrations

    def registered_keys(self) -> list[str]:
        return list(self._registrations)

    def subscribe(
        self,
        key: str | None,
        loader: Loader,
        options: FetchOptions | None = None,
    ) -> Subscription:
        if key is None:
            return Subscription(self, None)
        if self._closed:
            raise RuntimeError("FetchCoordinator is closed")

        options = options or FetchOptions()
        reg = self._registrations.get(key)
        if reg is None:
            reg = _Registration(key=key, loader=loader, options=options)
            self._registrations[key] = reg
            self._store.retain(key)
            self._start_polling(reg)
        else:
            reg.loader = loader

        reg.subscribers += 1
        reg.exhausted = False

        if options.fallback is not None and not self._store.get(key).has_value:
            self._store.set(key, value=options.fallback)

        if options.revalidate_on_mount:
            self._spawn(self._revalidate(reg))
        return Subscription(self, key)

    def _unsubscribe(self, key: str) -> None:
        reg = self._registrations.get(key)
        if reg is None:
            return
        reg.subscribers -= 1
        if reg.subscribers > 0:
            return
        self._stop_polling(reg)
        del self._registrations[key]
        self._store.release(key)
        logger.debug("Unsubscribed cache key %s", key)

    async def revalidate(self, key: str, *, force: bool = False) -> Any:
        """Revalidate a subscribed key; unknown keys are only marked stale."""
        reg = self._registrations.get(key)
        if reg is None:
            self._store.invalidate(key)
            return self._store.get(key).value
        if force:
            reg.exhausted = False
        return await self._revalidate(reg, force=force)

    async def invalidate(self, *keys: str | None) -> list[Any]:
        """Mark keys stale and refetch every one that is subscribed."""
        targets = [key for key in keys if key]
        for key in targets:
            self._store.invalidate(key)
        return list(
            await asyncio.gather(*(self.revalidate(key, force=True) for key in targets))
        )

    def prime(self, key: str, value: Any) -> bool:
        """Seed a key with already-fetched data unless it holds a fetched value."""
        if value is None or self._store.get(key).fetched_at is not None:
            return False
        self._store.set(key, value=value, error=None, fetched_at=time.time())
        return True

    def set_refresh_interval(self, key: str, refresh_interval_ms: int | None) -> None:
        reg = self._registrations.get(key)
        if reg is None:
            return
        self._stop_polling(reg)
        reg.options = replace(reg.options, refresh_interval_ms=refresh_interval_ms)
        self._start_polling(reg)

    async def close(self) -> None:
        """Cancel every timer, listener and request; later responses are dropped."""
        if self._closed:
            return
        self._closed = True
        self._remove_visibility_listener()

        pending: list[asyncio.Task] = []
        for reg in self._registrations.values():
            if reg.poll_task is not None:
                pending.append(reg.poll_task)
            self._store.release(reg.key)
        pending.extend(self._tasks)
        self._registrations.clear()
        self._tasks.clear()

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # --- Internals ---

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _revalidate(self, reg: _Registration, *, force: bool = False) -> Any:
        if not self._session.token:
            logger.debug("Skipping fetch for %s: no session token", reg.key)
            return self._store.get(reg.key).value
        if not force:
            if reg.inflight is not None and not reg.inflight.done():
                self._metrics.dedupe_hits.add(1, {"cache.key": reg.key})
                return await asyncio.shield(reg.inflight)
            window = reg.options.deduping_window_ms / 1000
            if reg.started_at is not None and self._clock() - reg.started_at < window:
                self._metrics.dedupe_hits.add(1, {"cache.key": reg.key})
                return self._store.get(reg.key).value

        reg.started_at = self._clock()
        reg.seq += 1
        if force:
            reg.floor = reg.seq
        task = self._spawn(self._fetch(reg, reg.seq))
        reg.inflight = task
        return await asyncio.shield(task)

    async def _fetch(self, reg: _Registration, seq: int) -> Any:
        key = reg.key
        token = self._session.token
        self._store.set(key, is_loading=True)

        attempt = 0
        while True:
            started = self._clock()
            error: Exception | None = None
            value: Any = None
            try:
                async with traced_cache_operation("fetch", key=key) as span:
                    span.set_attribute("cache.attempt", attempt)
                    value = await reg.loader()
            except Exception as exc:
                error = exc
            self._metrics.fetch_duration.record(self._clock() - started, {"cache.key": key})

            if not self._accepts(reg, seq, token):
                return self._discard(reg, seq)

            if error is None:
                self._metrics.fetch_total.add(1, {"cache.key": key, "outcome": "success"})
                reg.exhausted = False
                self._store.set(key, value=value, error=None, is_loading=False, fetched_at=time.time())
                return value

            self._metrics.fetch_total.add(1, {"cache.key": key, "outcome": "error"})

            if isinstance(error, AuthorizationError):
                logger.warning("Fetch for %s not authorized (HTTP %d)", key, error.status_code)
                reg.exhausted = True
                self._store.set(key, error=error, is_loading=False)
                if error.session_expired:
                    self._session.invalidate(f"HTTP 401 while fetching {key}")
                return self._store.get(key).value

            if attempt >= reg.options.retry:
                reg.exhausted = True
                logger.warning(
                    "Fetch for %s failed after %d attempt(s): %s", key, attempt + 1, error
                )
                self._store.set(key, error=error, is_loading=False)
                return self._store.get(key).value

            delay = _retry_delay(attempt, reg.options)
            attempt += 1
            self._metrics.fetch_retries.add(1, {"cache.key": key})
            logger.info(
                "Fetch for %s failed (%s), retry %d/%d after %.2fs",
                key,
                type(error).__name__,
                attempt,
                reg.options.retry,
                delay,
            )
            await asyncio.sleep(delay)

            if not self._accepts(reg, seq, token):
                return self._discard(reg, seq)

    def _discard(self, reg: _Registration, seq: int) -> Any:
        """Drop a response; the latest request of a live key still clears its loading flag."""
        key = reg.key
        if (
            not self._closed
            and self._registrations.get(key) is reg
            and seq == reg.seq
            and key in self._store
        ):
            self._store.set(key, is_loading=False)
        return self._store.get(key).value

    def _accepts(self, reg: _Registration, seq: int, token: str | None) -> bool:
        if self._closed or self._registrations.get(reg.key) is not reg:
            return False
        if self._session.token != token:
            logger.debug("Discarding response for %s: session token changed in flight", reg.key)
            self._metrics.stale_discards.add(1, {"cache.key": reg.key})
            return False
        if seq < reg.floor:
            logger.debug("Discarding superseded response for %s", reg.key)
            return False
        return True

    def _start_polling(self, reg: _Registration) -> None:
        interval_ms = reg.options.refresh_interval_ms
        if not interval_ms:
            return
        reg.poll_task = self._spawn(self._poll(reg, interval_ms / 1000))

    def _stop_polling(self, reg: _Registration) -> None:
        if reg.poll_task is not None:
            reg.poll_task.cancel()
            reg.poll_task = None

    async def _poll(self, reg: _Registration, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if reg.exhausted:
                continue
            if not self._monitor.visible and not reg.options.refresh_when_hidden:
                continue
            await self._revalidate(reg)

    def _on_visible(self) -> None:
        for reg in list(self._registrations.values()):
            if reg.options.revalidate_on_focus and not reg.exhausted:
                self._spawn(self._revalidate(reg))
