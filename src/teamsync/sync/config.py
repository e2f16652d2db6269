from __future__ import annotations

import os

from pydantic import BaseModel, Field


class SyncConfig(BaseModel):
    """Configuration for the team data synchronization layer."""

    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Backend base URL. Falls back to TEAMSYNC_API_URL env var.",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="httpx timeout per request. Falls back to TEAMSYNC_REQUEST_TIMEOUT.",
    )
    team_refresh_ms: int = Field(default=30_000, description="Polling interval for the team roster.")
    approvals_refresh_ms: int = Field(
        default=10_000,
        description="Polling interval for pending approvals; shorter than the others.",
    )
    analytics_refresh_ms: int = Field(default=60_000, description="Polling interval for team leave analytics.")
    pending_users_refresh_ms: int = Field(default=30_000, description="Polling interval for pending-password users.")
    team_deduping_ms: int = Field(default=5_000, description="Dedupe window for the team roster.")
    deduping_ms: int = Field(default=2_000, description="Default dedupe window for every other key.")
    retry_count: int = Field(default=3, description="Automatic retries before an entry is left in error.")
    retry_interval_ms: int = Field(default=5_000, description="Base delay between automatic retries.")
    retry_ceiling_ms: int = Field(default=20_000, description="Retry delay never grows beyond this.")
    preload_delay_ms: int = Field(default=100, description="Debounce before a component preload fires.")
    prefetch_delay_ms: int = Field(default=150, description="Debounce before a data prefetch fires.")
    eviction_grace_seconds: float = Field(
        default=300.0,
        description=(
            "How long an entry with no subscribers survives before eviction. "
            "Falls back to TEAMSYNC_EVICTION_GRACE_SECONDS."
        ),
    )

    def resolve(self) -> SyncConfig:
        """Return a copy with env-var fallbacks applied."""
        return self.model_copy(
            update={
                "api_base_url": os.getenv("TEAMSYNC_API_URL", self.api_base_url).rstrip("/"),
                "request_timeout_seconds": _env_float(
                    "TEAMSYNC_REQUEST_TIMEOUT", self.request_timeout_seconds
                ),
                "approvals_refresh_ms": _env_int(
                    "TEAMSYNC_APPROVALS_REFRESH_MS", self.approvals_refresh_ms
                ),
                "team_refresh_ms": _env_int("TEAMSYNC_TEAM_REFRESH_MS", self.team_refresh_ms),
                "retry_count": _env_int("TEAMSYNC_RETRY_COUNT", self.retry_count),
                "eviction_grace_seconds": _env_float(
                    "TEAMSYNC_EVICTION_GRACE_SECONDS", self.eviction_grace_seconds
                ),
            }
        )


def _env_int(key: str, default: int) -> int:
    val = os.getenv(key)
    if val is None or not val.strip():
        return default
    return int(val)


def _env_float(key: str, default: float) -> float:
    val = os.getenv(key)
    if val is None or not val.strip():
        return default
    return float(val)
