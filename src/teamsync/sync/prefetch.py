"""
Prefetch manager: warm code and data before the user navigates.

Both facilities debounce by name: scheduling a name again before its timer
fires replaces the timer, so only the latest request runs. ``cleanup()``
cancels every pending timer and in-flight load; hosts call it on teardown.

- ComponentPreloader runs a loader at most once per name.
- DataPrefetcher keeps one PrefetchTask per key and skips keys that are
  already loading or already prefetched.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from collections.abc import Awaitable, Callable
from types import ModuleType
from typing import Any

from teamsync.observability.metrics import SyncMetrics, create_sync_metrics
from teamsync.observability.tracing import traced_cache_operation
from teamsync.sync.models import PrefetchStatus, PrefetchTask

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


class Debouncer:
    """Named timers where scheduling a name again replaces its pending timer."""

    def __init__(self):
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def schedule(self, name: str, delay_ms: int, callback: Callable[[], None]) -> None:
        self.cancel(name)
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.pop(name, None)
            callback()

        self._timers[name] = loop.call_later(max(delay_ms, 0) / 1000, fire)

    def cancel(self, name: str) -> bool:
        handle = self._timers.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def pending(self, name: str) -> bool:
        return name in self._timers

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def __len__(self) -> int:
        return len(self._timers)


class PreloadableComponent:
    """A lazily loaded code unit whose load runs once and is shared afterwards.

    Usage::

        analytics_view = PreloadableComponent.from_module("myapp.views.analytics")
        module = await analytics_view.preload()
    """

    def __init__(self, loader: FetchFn):
        self._loader = loader
        self._load: asyncio.Future | None = None

    @classmethod
    def from_module(cls, module_name: str) -> PreloadableComponent:
        async def load() -> ModuleType:
            return await asyncio.to_thread(importlib.import_module, module_name)

        return cls(load)

    @property
    def loaded(self) -> bool:
        load = self._load
        return (
            load is not None
            and load.done()
            and not load.cancelled()
            and load.exception() is None
        )

    def preload(self) -> asyncio.Future:
        if self._load is None:
            self._load = asyncio.ensure_future(self._loader())
        return self._load


class ComponentPreloader:
    def __init__(self, metrics: SyncMetrics | None = None):
        self._metrics = metrics or create_sync_metrics()
        self._debouncer = Debouncer()
        self._loads: dict[str, asyncio.Task] = {}
        self._status: dict[str, PrefetchStatus] = {}

    def preload(self, name: str, loader: FetchFn, delay_ms: int = 100) -> None:
        """Debounced, memoized load: once a name has fired it never fires again."""
        if name in self._loads:
            return
        self._debouncer.schedule(name, delay_ms, lambda: self._fire(name, loader))

    def _fire(self, name: str, loader: FetchFn) -> None:
        if name in self._loads:
            return
        self._status[name] = PrefetchStatus.LOADING
        self._loads[name] = asyncio.get_running_loop().create_task(self._run(name, loader))

    async def _run(self, name: str, loader: FetchFn) -> bool:
        logger.debug("Preloading component %s", name)
        try:
            await loader()
        except Exception as exc:
            self._status[name] = PrefetchStatus.ERROR
            self._metrics.prefetch_total.add(1, {"prefetch.kind": "component", "outcome": "error"})
            logger.warning("Failed to preload component %s: %s", name, exc)
            return False
        self._status[name] = PrefetchStatus.SUCCESS
        self._metrics.prefetch_total.add(1, {"prefetch.kind": "component", "outcome": "success"})
        logger.debug("Component preloaded: %s", name)
        return True

    async def wait(self, name: str) -> bool:
        task = self._loads.get(name)
        if task is None:
            return False
        return await asyncio.shield(task)

    def is_preloaded(self, name: str) -> bool:
        return self._status.get(name) is PrefetchStatus.SUCCESS

    def status(self, name: str) -> PrefetchStatus:
        return self._status.get(name, PrefetchStatus.IDLE)

    def pending(self, name: str) -> bool:
        return self._debouncer.pending(name)

    def cancel(self, name: str) -> bool:
        return self._debouncer.cancel(name)

    def cleanup(self) -> None:
        self._debouncer.cancel_all()
        for task in self._loads.values():
            task.cancel()


class DataPrefetcher:
    def __init__(self, metrics: SyncMetrics | None = None):
        self._metrics = metrics or create_sync_metrics()
        self._debouncer = Debouncer()
        self._tasks: dict[str, PrefetchTask] = {}
        self._running: dict[str, asyncio.Task] = {}
        self._waiters: dict[str, asyncio.Future] = {}

    def prefetch(self, key: str, fetch_fn: FetchFn, delay_ms: int = 150) -> asyncio.Future:
        """Schedule a background fetch for ``key``.

        Returns a future that resolves with the key's PrefetchTask once the
        debounced fetch settles (or is cancelled). It never raises: a failed
        prefetch only records ``status=error``.
        """
        current = self._tasks.get(key)
        if current is not None and current.status is PrefetchStatus.SUCCESS:
            done = asyncio.get_running_loop().create_future()
            done.set_result(current)
            return done
        if current is not None and current.status is PrefetchStatus.LOADING:
            return self._waiter(key)

        waiter = self._waiter(key)
        self._debouncer.schedule(key, delay_ms, lambda: self._fire(key, fetch_fn))
        return waiter

    def _waiter(self, key: str) -> asyncio.Future:
        waiter = self._waiters.get(key)
        if waiter is None:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[key] = waiter
        return waiter

    def _fire(self, key: str, fetch_fn: FetchFn) -> None:
        task = PrefetchTask(name=key, status=PrefetchStatus.LOADING)
        self._tasks[key] = task
        self._running[key] = asyncio.get_running_loop().create_task(self._run(task, fetch_fn))

    async def _run(self, task: PrefetchTask, fetch_fn: FetchFn) -> None:
        logger.debug("Prefetching data %s", task.name)
        try:
            async with traced_cache_operation("prefetch", key=task.name):
                result = await fetch_fn()
        except Exception as exc:
            task.status = PrefetchStatus.ERROR
            task.error = exc
            self._metrics.prefetch_total.add(1, {"prefetch.kind": "data", "outcome": "error"})
            logger.warning("Failed to prefetch data %s: %s", task.name, exc)
        else:
            task.result = result
            task.error = None
            task.status = PrefetchStatus.SUCCESS
            self._metrics.prefetch_total.add(1, {"prefetch.kind": "data", "outcome": "success"})
            logger.debug("Data prefetched: %s", task.name)
        finally:
            if self._tasks.get(task.name) is task:
                self._running.pop(task.name, None)
                self._resolve(task.name)

    def _resolve(self, key: str) -> None:
        waiter = self._waiters.pop(key, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(self.get_task(key))

    def get_task(self, key: str) -> PrefetchTask:
        return self._tasks.get(key) or PrefetchTask(name=key)

    def get_prefetched_data(self, key: str) -> Any:
        task = self._tasks.get(key)
        if task is None or task.status is not PrefetchStatus.SUCCESS:
            return None
        return task.result

    def get_status(self, key: str) -> PrefetchStatus:
        task = self._tasks.get(key)
        return task.status if task is not None else PrefetchStatus.IDLE

    def is_prefetched(self, key: str) -> bool:
        return self.get_status(key) is PrefetchStatus.SUCCESS

    def pending(self, key: str) -> bool:
        return self._debouncer.pending(key)

    def invalidate(self, key: str) -> None:
        """Forget a prefetched result so the next prefetch fetches again."""
        if key not in self._running:
            self._tasks.pop(key, None)

    def cancel(self, key: str) -> bool:
        cancelled = self._debouncer.cancel(key)
        if cancelled and key not in self._running:
            self._resolve(key)
        return cancelled

    def cleanup(self) -> None:
        self._debouncer.cancel_all()
        for running in self._running.values():
            running.cancel()
        for key in list(self._waiters):
            self._resolve(key)

    def reset(self) -> None:
        """Cancel everything and forget every prefetched result."""
        self.cleanup()
        self._running.clear()
        self._tasks.clear()
