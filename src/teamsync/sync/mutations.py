"""
Remote writes followed by reconciliation-by-refetch.

Nothing is patched locally: on success every cache key the write could have
changed is invalidated and refetched, on failure the store is left untouched
and a MutationResult carries the error. The executor does not serialize
writes against the same id; hosts track in-flight ids themselves.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from teamsync.observability.metrics import SyncMetrics, create_sync_metrics
from teamsync.observability.tracing import traced_mutation
from teamsync.sync.api import TeamApiClient
from teamsync.sync.coordinator import FetchCoordinator
from teamsync.sync.errors import (
    ApiError,
    AuthorizationError,
    InvalidInputError,
    SyncError,
    error_message,
)
from teamsync.sync.models import MutationResult

logger = logging.getLogger(__name__)

TEAM = "team"
APPROVALS = "approvals"
ANALYTICS = "analytics"

KeyResolver = Callable[[str], "str | None"]


class MutationExecutor:
    def __init__(
        self,
        api: TeamApiClient,
        coordinator: FetchCoordinator,
        resolve_key: KeyResolver,
        *,
        metrics: SyncMetrics | None = None,
    ):
        self._api = api
        self._coordinator = coordinator
        self._resolve_key = resolve_key
        self._metrics = metrics or create_sync_metrics()

    @traced_mutation("approve")
    async def approve(self, leave_id: str, reason: str | None = None) -> MutationResult:
        return await self._execute(
            "approve",
            lambda: self._api.approve_leave(leave_id, reason),
            invalidates=(APPROVALS, ANALYTICS),
            fallback_error="Failed to approve leave",
        )

    @traced_mutation("reject")
    async def reject(self, leave_id: str, reason: str) -> MutationResult:
        if not reason or not reason.strip():
            self._metrics.mutation_total.add(1, {"mutation": "reject", "outcome": "invalid"})
            return MutationResult(success=False, error="Rejection reason is required")
        return await self._execute(
            "reject",
            lambda: self._api.reject_leave(leave_id, reason.strip()),
            invalidates=(APPROVALS, ANALYTICS),
            fallback_error="Failed to reject leave",
        )

    @traced_mutation("add_member")
    async def add_member(self, email: str) -> MutationResult:
        return await self._execute(
            "add_member",
            lambda: self._api.add_member(email),
            invalidates=(TEAM,),
            fallback_error="Failed to add member",
        )

    @traced_mutation("remove_member")
    async def remove_member(self, member_id: str) -> MutationResult:
        return await self._execute(
            "remove_member",
            lambda: self._api.remove_member(member_id),
            invalidates=(TEAM,),
            fallback_error="Failed to remove member",
        )

    @traced_mutation("create_team")
    async def create_team(self, name: str, description: str | None = None) -> MutationResult:
        result = await self._execute(
            "create_team",
            lambda: self._api.create_team(name, description),
            invalidates=(TEAM,),
            fallback_error="Failed to create team",
        )
        if result.success and isinstance(result.data, dict) and "team" in result.data:
            return MutationResult(success=True, status_code=result.status_code, data=result.data["team"])
        return result

    async def _execute(
        self,
        name: str,
        call: Callable[[], Awaitable[Any]],
        *,
        invalidates: tuple[str, ...],
        fallback_error: str,
    ) -> MutationResult:
        started = time.monotonic()
        try:
            data = await call()
        except ApiError as exc:
            if isinstance(exc, AuthorizationError) and exc.session_expired:
                self._api.session.invalidate(f"HTTP 401 during {name}")
            return self._failed(name, started, error_message(exc.info, fallback_error), exc.status_code)
        except InvalidInputError as exc:
            return self._failed(name, started, exc.message, None)
        except SyncError as exc:
            logger.debug("Mutation %s transport failure: %s", name, exc)
            return self._failed(name, started, fallback_error, None)

        keys = [self._resolve_key(logical) for logical in invalidates]
        await self._coordinator.invalidate(*keys)

        self._metrics.mutation_total.add(1, {"mutation": name, "outcome": "success"})
        self._metrics.mutation_duration.record(time.monotonic() - started, {"mutation": name})
        logger.info("Mutation %s succeeded; refetched %s", name, [k for k in keys if k])
        return MutationResult(success=True, data=data)

    def _failed(
        self, name: str, started: float, message: str, status_code: int | None
    ) -> MutationResult:
        self._metrics.mutation_total.add(1, {"mutation": name, "outcome": "error"})
        self._metrics.mutation_duration.record(time.monotonic() - started, {"mutation": name})
        logger.warning("Mutation %s failed: %s", name, message)
        return MutationResult(success=False, error=message, status_code=status_code)
