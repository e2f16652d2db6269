from __future__ import annotations

import asyncio

import pytest

from fakes import FakeLoader
from teamsync.sync.coordinator import FetchOptions, _retry_delay
from teamsync.sync.errors import AuthorizationError, TransportError

FAST = FetchOptions(deduping_window_ms=50, retry=0)


async def test_concurrent_subscribers_share_one_request(coordinator):
    loader = FakeLoader("v1", delays=(0.02,))

    first = coordinator.subscribe("approvals", loader, FAST)
    second = coordinator.subscribe("approvals", loader, FAST)
    await asyncio.sleep(0.06)

    assert loader.calls == 1
    assert first.value == second.value == "v1"
    assert not first.is_loading


async def test_revalidate_inside_dedupe_window_is_suppressed(coordinator):
    loader = FakeLoader("v1", "v2")
    coordinator.subscribe("team", loader, FetchOptions(deduping_window_ms=2_000))
    await asyncio.sleep(0.02)

    assert await coordinator.revalidate("team") == "v1"
    assert loader.calls == 1

    assert await coordinator.revalidate("team", force=True) == "v2"
    assert loader.calls == 2


async def test_response_after_token_change_is_discarded(coordinator, session, store):
    loader = FakeLoader("user-a-data")
    loader.gate = asyncio.Event()

    coordinator.subscribe("approvals", loader, FAST)
    await asyncio.sleep(0.01)
    session.token = "token-2"
    loader.gate.set()
    await asyncio.sleep(0.01)

    assert loader.calls == 1
    assert store.get("approvals").value is None
    assert store.get("approvals").fetched_at is None
    assert not store.get("approvals").is_loading


async def test_null_key_subscription_is_inert(coordinator):
    loader = FakeLoader("v1")

    sub = coordinator.subscribe(None, loader, FAST)
    await asyncio.sleep(0.02)

    assert loader.calls == 0
    assert sub.value is None
    assert sub.closed
    assert coordinator.registered_keys() == []
    assert await sub.refresh() is None


async def test_fallback_is_served_until_first_fetch(coordinator):
    loader = FakeLoader("fresh")
    loader.gate = asyncio.Event()

    sub = coordinator.subscribe("team", loader, FetchOptions(fallback="prefetched"))

    assert sub.value == "prefetched"
    loader.gate.set()
    await asyncio.sleep(0.01)
    assert sub.value == "fresh"


async def test_fallback_does_not_overwrite_cached_value(coordinator, store):
    store.set("team", value="cached")

    coordinator.subscribe("team", FakeLoader("fresh", delays=(0.05,)), FetchOptions(fallback="prefetched"))

    assert store.get("team").value == "cached"


async def test_failures_retry_a_bounded_number_of_times(coordinator, store):
    loader = FakeLoader(error=TransportError("offline"))
    options = FetchOptions(retry=2, retry_interval_ms=10, retry_ceiling_ms=20)

    coordinator.subscribe("approvals", loader, options)
    await asyncio.sleep(0.15)

    assert loader.calls == 3
    entry = store.get("approvals")
    assert isinstance(entry.error, TransportError)
    assert not entry.is_loading


def test_retry_delay_is_capped_at_ceiling():
    options = FetchOptions(retry_interval_ms=5_000, retry_ceiling_ms=20_000)

    assert _retry_delay(0, options) == 5.0
    assert _retry_delay(1, options) == 10.0
    assert _retry_delay(5, options) == 20.0


async def test_error_keeps_last_good_value(coordinator, store):
    loader = FakeLoader("good")
    sub = coordinator.subscribe("team", loader, FAST)
    await asyncio.sleep(0.01)

    loader.error = TransportError("offline")
    await sub.refresh()

    assert sub.value == "good"
    assert isinstance(sub.error, TransportError)


async def test_polling_fires_once_per_interval(coordinator):
    loader = FakeLoader()

    coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=200, deduping_window_ms=50))
    await asyncio.sleep(0.3)

    assert loader.calls == 2


async def test_polling_pauses_while_hidden(coordinator, monitor):
    loader = FakeLoader()
    monitor.set_visible(False)

    coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=50, deduping_window_ms=10))
    await asyncio.sleep(0.18)

    assert loader.calls == 1


async def test_refresh_when_hidden_keeps_polling(coordinator, monitor):
    loader = FakeLoader()
    monitor.set_visible(False)

    coordinator.subscribe(
        "approvals",
        loader,
        FetchOptions(refresh_interval_ms=50, refresh_when_hidden=True, deduping_window_ms=10),
    )
    await asyncio.sleep(0.18)

    assert loader.calls >= 3


async def test_focus_revalidates_opted_in_keys_only(coordinator, monitor):
    team = FakeLoader()
    analytics = FakeLoader()
    coordinator.subscribe("team", team, FetchOptions(deduping_window_ms=10))
    coordinator.subscribe("analytics:t1", analytics, FetchOptions(deduping_window_ms=10, revalidate_on_focus=False))
    await asyncio.sleep(0.03)

    monitor.set_visible(False)
    monitor.set_visible(True)
    await asyncio.sleep(0.02)

    assert team.calls == 2
    assert analytics.calls == 1


async def test_one_visibility_listener_per_coordinator(coordinator, monitor):
    for key in ("team", "approvals", "pendingUsers"):
        coordinator.subscribe(key, FakeLoader(), FAST)

    assert monitor.listener_count == 1

    await coordinator.close()
    assert monitor.listener_count == 0


async def test_close_stops_polling_and_rejects_new_subscribers(coordinator):
    loader = FakeLoader()
    coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10))
    await asyncio.sleep(0.01)

    await coordinator.close()
    calls = loader.calls
    await asyncio.sleep(0.1)

    assert loader.calls == calls
    with pytest.raises(RuntimeError):
        coordinator.subscribe("team", loader)


async def test_last_unsubscribe_stops_polling_and_evicts(coordinator, store):
    loader = FakeLoader()
    first = coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10))
    second = coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10))
    await asyncio.sleep(0.01)

    first.close()
    assert coordinator.is_registered("approvals")

    second.close()
    calls = loader.calls
    await asyncio.sleep(0.1)

    assert not coordinator.is_registered("approvals")
    assert "approvals" not in store
    assert loader.calls == calls


async def test_forced_refresh_supersedes_older_request(coordinator, store):
    loader = FakeLoader("old", "new", delays=(0.05, 0.0))

    sub = coordinator.subscribe("team", loader, FAST)
    await asyncio.sleep(0.01)
    assert await sub.refresh() == "new"
    await asyncio.sleep(0.06)

    assert loader.calls == 2
    assert store.get("team").value == "new"


async def test_exhausted_key_waits_for_manual_refresh(coordinator):
    loader = FakeLoader(error=TransportError("offline"))
    sub = coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10, retry=0))
    await asyncio.sleep(0.1)

    assert loader.calls == 1

    loader.error = None
    await sub.refresh()
    assert loader.calls == 2
    assert sub.error is None


async def test_unauthorized_invalidates_session_without_retry(coordinator, session):
    loader = FakeLoader(error=AuthorizationError(401, "expired"))

    sub = coordinator.subscribe("team", loader, FetchOptions(retry=3, retry_interval_ms=10))
    await asyncio.sleep(0.05)

    assert loader.calls == 1
    assert len(session.invalidations) == 1
    assert isinstance(sub.error, AuthorizationError)


async def test_forbidden_is_stored_without_logout(coordinator, session):
    loader = FakeLoader(error=AuthorizationError(403, "forbidden"))

    sub = coordinator.subscribe("pendingUsers", loader, FetchOptions(retry=3, retry_interval_ms=10))
    await asyncio.sleep(0.05)

    assert loader.calls == 1
    assert session.invalidations == []
    assert session.token == "token-1"
    assert sub.error.status_code == 403


async def test_invalidate_refetches_subscribed_keys_and_skips_none(coordinator):
    approvals = FakeLoader("a1", "a2")
    analytics = FakeLoader("s1", "s2")
    coordinator.subscribe("approvals", approvals, FAST)
    coordinator.subscribe("analytics:t1", analytics, FAST)
    await asyncio.sleep(0.01)

    values = await coordinator.invalidate("approvals", "analytics:t1", None)

    assert values == ["a2", "s2"]
    assert approvals.calls == 2
    assert analytics.calls == 2


async def test_prime_only_fills_keys_without_fetched_value(coordinator, store):
    assert coordinator.prime("team", "prefetched") is True
    assert store.get("team").fetched_at is not None

    assert coordinator.prime("team", "other") is False
    assert coordinator.prime("approvals", None) is False
    assert store.get("team").value == "prefetched"


async def test_on_change_notifies_subscription_listeners(coordinator):
    seen = []
    sub = coordinator.subscribe("team", FakeLoader("v1"), FAST)
    sub.on_change(lambda key, entry: seen.append((entry.value, entry.is_loading)))
    await asyncio.sleep(0.01)

    assert seen[-1] == ("v1", False)
    assert (None, True) in seen


async def test_clearing_refresh_interval_cancels_polling(coordinator):
    loader = FakeLoader()
    sub = coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10))
    await asyncio.sleep(0.01)

    sub.set_refresh_interval(None)
    await asyncio.sleep(0.1)

    assert loader.calls == 1


async def test_poll_tick_during_focus_revalidation_shares_request(coordinator, monitor):
    loader = FakeLoader(delays=(0.0, 0.05))
    coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=100, deduping_window_ms=10))
    await asyncio.sleep(0.09)

    monitor.set_visible(False)
    monitor.set_visible(True)
    await asyncio.sleep(0.06)

    assert loader.calls == 2


async def test_unauthorized_key_is_not_polled_again(coordinator, session):
    loader = FakeLoader(error=AuthorizationError(401, "expired"))

    coordinator.subscribe("approvals", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10))
    await asyncio.sleep(0.15)

    assert session.token is None
    assert loader.calls == 1


async def test_nothing_is_fetched_without_a_token(coordinator, session, monitor):
    session.token = None
    loader = FakeLoader()

    sub = coordinator.subscribe("team", loader, FetchOptions(refresh_interval_ms=30, deduping_window_ms=10))
    monitor.set_visible(False)
    monitor.set_visible(True)
    await asyncio.sleep(0.1)

    assert await sub.refresh() is None
    assert loader.calls == 0
    assert not sub.is_loading
