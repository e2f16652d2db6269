from __future__ import annotations

import pytest

from fakes import FakeBackend, FakeSession
from teamsync.sync.cache import CacheStore
from teamsync.sync.coordinator import FetchCoordinator, VisibilityMonitor


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def store() -> CacheStore:
    return CacheStore(eviction_grace_seconds=0)


@pytest.fixture
def monitor() -> VisibilityMonitor:
    return VisibilityMonitor()


@pytest.fixture
async def coordinator(store, session, monitor):
    coordinator = FetchCoordinator(store, session, monitor=monitor)
    yield coordinator
    await coordinator.close()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def http_client(backend):
    async with backend.client() as client:
        yield client
