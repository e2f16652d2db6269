from __future__ import annotations

import asyncio
import json

from fakes import FakeLoader
from teamsync.sync.errors import TransportError
from teamsync.sync.models import PrefetchStatus
from teamsync.sync.prefetch import (
    ComponentPreloader,
    DataPrefetcher,
    Debouncer,
    PreloadableComponent,
)


async def test_debouncer_replaces_pending_timer():
    debouncer = Debouncer()
    fired = []

    for n in range(3):
        debouncer.schedule("team", 20, lambda n=n: fired.append(n))
    assert len(debouncer) == 1

    await asyncio.sleep(0.05)

    assert fired == [2]
    assert not debouncer.pending("team")


async def test_debouncer_cancel_all():
    debouncer = Debouncer()
    fired = []
    debouncer.schedule("a", 10, lambda: fired.append("a"))
    debouncer.schedule("b", 10, lambda: fired.append("b"))

    debouncer.cancel_all()
    await asyncio.sleep(0.03)

    assert fired == []


async def test_rapid_prefetch_requests_collapse_into_one_fetch():
    prefetcher = DataPrefetcher()
    fetch = FakeLoader({"teamId": "t1"})

    waiters = [prefetcher.prefetch("team", fetch, delay_ms=20) for _ in range(3)]
    tasks = await asyncio.gather(*waiters)

    assert fetch.calls == 1
    assert all(task.status is PrefetchStatus.SUCCESS for task in tasks)
    assert prefetcher.get_prefetched_data("team") == {"teamId": "t1"}


async def test_prefetch_short_circuits_after_success():
    prefetcher = DataPrefetcher()
    fetch = FakeLoader("data")
    await prefetcher.prefetch("approvals", fetch, delay_ms=5)

    task = await prefetcher.prefetch("approvals", fetch, delay_ms=5)

    assert task.status is PrefetchStatus.SUCCESS
    assert fetch.calls == 1
    assert not prefetcher.pending("approvals")


async def test_prefetch_while_loading_joins_the_running_fetch():
    prefetcher = DataPrefetcher()
    fetch = FakeLoader("data", delays=(0.03,))
    first = prefetcher.prefetch("approvals", fetch, delay_ms=0)
    await asyncio.sleep(0.01)
    assert prefetcher.get_status("approvals") is PrefetchStatus.LOADING

    second = prefetcher.prefetch("approvals", fetch, delay_ms=0)
    await asyncio.gather(first, second)

    assert fetch.calls == 1


async def test_failed_prefetch_records_error_without_raising():
    prefetcher = DataPrefetcher()
    fetch = FakeLoader(error=TransportError("offline"))

    task = await prefetcher.prefetch("pendingUsers", fetch, delay_ms=5)

    assert task.status is PrefetchStatus.ERROR
    assert isinstance(task.error, TransportError)
    assert prefetcher.get_prefetched_data("pendingUsers") is None

    fetch.error = None
    task = await prefetcher.prefetch("pendingUsers", fetch, delay_ms=5)
    assert task.status is PrefetchStatus.SUCCESS
    assert fetch.calls == 2


async def test_cleanup_cancels_pending_prefetch():
    prefetcher = DataPrefetcher()
    fetch = FakeLoader("data")
    waiter = prefetcher.prefetch("team", fetch, delay_ms=30)

    prefetcher.cleanup()
    await asyncio.sleep(0.05)

    assert fetch.calls == 0
    assert waiter.done()
    assert waiter.result().status is PrefetchStatus.IDLE


async def test_invalidate_allows_a_fresh_prefetch():
    prefetcher = DataPrefetcher()
    fetch = FakeLoader("v1", "v2")
    await prefetcher.prefetch("team", fetch, delay_ms=0)

    prefetcher.invalidate("team")
    task = await prefetcher.prefetch("team", fetch, delay_ms=0)

    assert task.result == "v2"
    assert fetch.calls == 2


async def test_component_preload_runs_at_most_once():
    preloader = ComponentPreloader()
    loader = FakeLoader("bundle")

    preloader.preload("analytics", loader, delay_ms=10)
    preloader.preload("analytics", loader, delay_ms=10)
    await asyncio.sleep(0.03)
    assert await preloader.wait("analytics") is True

    preloader.preload("analytics", loader, delay_ms=0)
    await asyncio.sleep(0.01)

    assert loader.calls == 1
    assert preloader.is_preloaded("analytics")


async def test_component_preload_failure_is_recorded():
    preloader = ComponentPreloader()
    loader = FakeLoader(error=ImportError("no module"))

    preloader.preload("analytics", loader, delay_ms=0)
    await asyncio.sleep(0.01)

    assert preloader.status("analytics") is PrefetchStatus.ERROR
    assert not preloader.is_preloaded("analytics")


async def test_component_preloader_cleanup_cancels_timers():
    preloader = ComponentPreloader()
    loader = FakeLoader("bundle")

    preloader.preload("members", loader, delay_ms=20)
    assert preloader.pending("members")
    preloader.cleanup()
    await asyncio.sleep(0.04)

    assert loader.calls == 0
    assert preloader.status("members") is PrefetchStatus.IDLE


async def test_preloadable_component_imports_module_once():
    component = PreloadableComponent.from_module("json")

    first = component.preload()
    second = component.preload()

    assert first is second
    assert await first is json
    assert component.loaded
