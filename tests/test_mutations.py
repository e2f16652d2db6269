from __future__ import annotations

import asyncio

import httpx
import pytest

from fakes import FakeLoader, body_of
from teamsync.sync.api import TeamApiClient
from teamsync.sync.coordinator import FetchOptions
from teamsync.sync.mutations import MutationExecutor
from teamsync.sync.session import SessionStore

KEYS = {"team": "team", "approvals": "approvals", "analytics": "analytics:t1"}
OPTIONS = FetchOptions(deduping_window_ms=10, retry=0)


@pytest.fixture
async def loaders(coordinator):
    loaders = {key: FakeLoader() for key in KEYS.values()}
    for key, loader in loaders.items():
        coordinator.subscribe(key, loader, OPTIONS)
    return loaders


@pytest.fixture
def executor(http_client, coordinator, session):
    api = TeamApiClient(http_client, "http://api.test", session)
    return MutationExecutor(api, coordinator, KEYS.get)


async def test_empty_rejection_reason_never_reaches_network(executor, backend, loaders):
    await asyncio.sleep(0.01)

    result = await executor.reject("l1", "   ")

    assert not result.success
    assert result.error == "Rejection reason is required"
    assert backend.requests == []
    assert loaders["approvals"].calls == 1


async def test_reject_puts_once_and_refetches_approvals_and_analytics(executor, backend, loaders):
    await asyncio.sleep(0.01)

    result = await executor.reject("l1", "out of capacity")

    assert result.success
    puts = backend.calls("PUT", "/api/leaves/l1/reject")
    assert len(puts) == 1
    assert body_of(puts[0]) == {"rejectionReason": "out of capacity"}
    assert loaders["approvals"].calls == 2
    assert loaders["analytics:t1"].calls == 2
    assert loaders["team"].calls == 1


async def test_approve_refetches_approvals_and_analytics(executor, backend, loaders):
    await asyncio.sleep(0.01)

    result = await executor.approve("l2")

    assert result.success
    assert len(backend.calls("PUT", "/api/leaves/l2/approve")) == 1
    assert loaders["approvals"].calls == 2
    assert loaders["analytics:t1"].calls == 2


async def test_add_member_refetches_only_the_team(executor, backend, loaders):
    await asyncio.sleep(0.01)

    result = await executor.add_member("new@example.com")

    assert result.success
    assert body_of(backend.calls("POST", "/api/teams/members")[0]) == {"email": "new@example.com"}
    assert loaders["team"].calls == 2
    assert loaders["approvals"].calls == 1
    assert loaders["analytics:t1"].calls == 1


async def test_remove_member_refetches_team(executor, backend, loaders):
    await asyncio.sleep(0.01)

    result = await executor.remove_member("m2")

    assert result.success
    assert len(backend.calls("DELETE", "/api/teams/members/m2")) == 1
    assert loaders["team"].calls == 2


async def test_create_team_returns_created_team(executor, backend, loaders):
    backend.route("POST", "/api/teams", 201, {"team": {"teamId": "t9", "name": "Ops"}})
    await asyncio.sleep(0.01)

    result = await executor.create_team("  Ops  ", " on call ")

    assert result.success
    assert result.data == {"teamId": "t9", "name": "Ops"}
    assert body_of(backend.calls("POST", "/api/teams")[0]) == {"name": "Ops", "description": "on call"}
    assert loaders["team"].calls == 2


async def test_failure_carries_server_message_and_leaves_cache_alone(executor, backend, loaders):
    backend.route("POST", "/api/teams/members", 400, {"error": "User not found"})
    await asyncio.sleep(0.01)

    result = await executor.add_member("ghost@example.com")

    assert not result.success
    assert result.error == "User not found"
    assert result.status_code == 400
    assert loaders["team"].calls == 1


async def test_failure_without_server_message_uses_fallback(executor, backend):
    backend.route("PUT", "/api/leaves/l1/approve", 500, None)

    result = await executor.approve("l1")

    assert result.error == "Failed to approve leave"
    assert result.status_code == 500


async def test_transport_failure_reports_fallback(coordinator, session):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        executor = MutationExecutor(TeamApiClient(client, "http://api.test", session), coordinator, KEYS.get)
        result = await executor.remove_member("m1")

    assert not result.success
    assert result.error == "Failed to remove member"
    assert result.status_code is None


async def test_unauthorized_mutation_logs_out(http_client, coordinator, backend):
    session = SessionStore("token-1")
    backend.route("PUT", "/api/leaves/l1/approve", 401, {"message": "Token expired"})
    executor = MutationExecutor(TeamApiClient(http_client, "http://api.test", session), coordinator, KEYS.get)

    result = await executor.approve("l1")

    assert result.error == "Token expired"
    assert session.token is None


async def test_forbidden_mutation_keeps_session(http_client, coordinator, backend):
    session = SessionStore("token-1")
    backend.route("POST", "/api/teams/members", 403, {"error": "Managers only"})
    executor = MutationExecutor(TeamApiClient(http_client, "http://api.test", session), coordinator, KEYS.get)

    result = await executor.add_member("x@example.com")

    assert result.error == "Managers only"
    assert result.status_code == 403
    assert session.token == "token-1"
