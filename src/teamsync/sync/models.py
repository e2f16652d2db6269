from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


# --- Pydantic models (external boundaries) ---


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class TeamMember(ApiModel):
    id: str
    name: str = ""
    email: str = ""
    role: str | None = None
    status: str = "available"


class Team(ApiModel):
    team_id: str = Field(alias="teamId")
    name: str = ""
    description: str = ""
    members: list[TeamMember] = []


class Approval(ApiModel):
    id: str
    requester: Any = None
    from_date: str | None = Field(default=None, alias="fromDate")
    to_date: str | None = Field(default=None, alias="toDate")
    leave_type: str | None = Field(default=None, alias="leaveType")
    destination: str | None = None
    submitted_at: str | None = Field(default=None, alias="submittedAt")
    status: str = "pending"


class TeamLeaves(ApiModel):
    leaves: list[dict[str, Any]] = []
    statistics: dict[str, Any] = {}


class PendingUser(ApiModel):
    id: str
    name: str = ""
    email: str = ""


class PendingUsers(ApiModel):
    users: list[PendingUser] = []


class UserProfile(ApiModel):
    id: str | None = None
    name: str = ""
    email: str = ""
    role: str = "employee"


# --- Dataclasses (internal state) ---


class PrefetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Snapshot of one cached resource. Readers never get a mutable handle."""

    value: T | None = None
    fetched_at: float | None = None
    error: Exception | None = None
    is_loading: bool = False

    @property
    def has_value(self) -> bool:
        return self.value is not None


@dataclass
class PrefetchTask:
    name: str
    status: PrefetchStatus = PrefetchStatus.IDLE
    started_at: float = field(default_factory=time.time)
    result: Any = None
    error: Exception | None = None


@dataclass(frozen=True)
class MutationResult:
    success: bool
    error: str | None = None
    status_code: int | None = None
    data: Any = None


@dataclass(frozen=True)
class TeamStats:
    total_members: int = 0
    available_members: int = 0
    on_leave_members: int = 0
    pending_approvals: int = 0
    pending_users: int = 0
    total_leaves: int = 0
