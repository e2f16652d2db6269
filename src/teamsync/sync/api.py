"""HTTP client for the leave-tracking backend.

Every request reads the bearer token from the session at call time and maps
failures onto the layer's error taxonomy:

- httpx transport failures (offline, DNS, timeout) -> TransportError
- 401/403 -> AuthorizationError
- any other non-2xx -> ApiError, message taken from the server payload
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from teamsync.sync.errors import (
    ApiError,
    AuthorizationError,
    InvalidInputError,
    TransportError,
    error_message,
)
from teamsync.sync.models import Approval, PendingUsers, Team, TeamLeaves, UserProfile
from teamsync.sync.session import SessionGuard

logger = logging.getLogger(__name__)

MY_TEAM_PATH = "/api/teams/my-team"
PENDING_APPROVALS_PATH = "/api/leaves/pending"
TEAM_LEAVES_PATH = "/api/teams/{team_id}/leaves"
PENDING_USERS_PATH = "/api/users/temp-passwords"
PROFILE_PATH = "/auth/profile"

APPROVE_PATH = "/api/leaves/{leave_id}/approve"
REJECT_PATH = "/api/leaves/{leave_id}/reject"
MEMBERS_PATH = "/api/teams/members"
MEMBER_PATH = "/api/teams/members/{member_id}"
TEAMS_PATH = "/api/teams"


class TeamApiClient:
    """Authenticated access to the team, leave and user endpoints.

    Usage:
        async with httpx.AsyncClient(timeout=30.0) as http:
            api = TeamApiClient(http, "http://localhost:8000", session)
            team = await api.get_my_team()
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str, session: SessionGuard):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._session = session

    @property
    def session(self) -> SessionGuard:
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._session.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Issue one request and return the decoded JSON body.

        Returns None for an empty body, or for a 404 when ``allow_not_found``.
        """
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers(), json=json)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, type(exc).__name__)
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404 and allow_not_found:
            return None

        if response.is_error:
            info = _decode(response)
            message = error_message(info, f"API Error ({response.status_code})")
            if response.status_code in (401, 403):
                raise AuthorizationError(response.status_code, message, info)
            raise ApiError(response.status_code, message, info)

        return _decode(response)

    # --- Resources ---

    async def get_my_team(self) -> Team | None:
        data = await self.request("GET", MY_TEAM_PATH, allow_not_found=True)
        if data is None:
            return None
        return Team.model_validate(data)

    async def get_pending_approvals(self) -> list[Approval]:
        data = await self.request("GET", PENDING_APPROVALS_PATH) or []
        return [Approval.model_validate(item) for item in data]

    async def get_team_leaves(self, team_id: str) -> TeamLeaves:
        data = await self.request("GET", TEAM_LEAVES_PATH.format(team_id=team_id))
        return TeamLeaves.model_validate(data or {})

    async def get_pending_users(self) -> PendingUsers:
        data = await self.request("GET", PENDING_USERS_PATH)
        return PendingUsers.model_validate(data or {})

    async def get_profile(self) -> UserProfile | None:
        """Load the current user; None if the session changed while in flight."""
        token = self._session.token
        if not token:
            return None
        data = await self.request("GET", PROFILE_PATH)
        if self._session.token != token:
            logger.debug("Dropping profile response: session changed in flight")
            return None
        return UserProfile.model_validate(data or {})

    # --- Mutations ---

    async def approve_leave(self, leave_id: str, reason: str | None = None) -> Any:
        body = {"reason": reason} if reason else None
        return await self.request("PUT", APPROVE_PATH.format(leave_id=leave_id), json=body)

    async def reject_leave(self, leave_id: str, reason: str) -> Any:
        if not reason or not reason.strip():
            raise InvalidInputError("Rejection reason is required")
        return await self.request(
            "PUT",
            REJECT_PATH.format(leave_id=leave_id),
            json={"rejectionReason": reason},
        )

    async def remove_member(self, member_id: str) -> Any:
        return await self.request("DELETE", MEMBER_PATH.format(member_id=member_id))

    async def add_member(self, email: str) -> Any:
        if not email or not email.strip():
            raise InvalidInputError("Email is required")
        return await self.request("POST", MEMBERS_PATH, json={"email": email.strip()})

    async def create_team(self, name: str, description: str | None = None) -> Any:
        if not name or not name.strip():
            raise InvalidInputError("Team name is required")
        return await self.request(
            "POST",
            TEAMS_PATH,
            json={"name": name.strip(), "description": (description or "").strip()},
        )


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
