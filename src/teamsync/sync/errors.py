from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for failures raised by the team data layer."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(SyncError):
    """Raised when the request never produced an HTTP response."""


class ApiError(SyncError):
    """Raised for a non-2xx response; carries the server payload when present."""

    def __init__(self, status_code: int, message: str, info: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.info = info


class AuthorizationError(ApiError):
    """Raised for 401/403 so callers can re-authenticate instead of retrying."""

    @property
    def session_expired(self) -> bool:
        return self.status_code == 401


class InvalidInputError(SyncError):
    """Raised when input is rejected before any network call is made."""


def error_message(info: Any, default: str) -> str:
    """Pick the human-readable message out of a server error payload."""
    if isinstance(info, dict):
        for field in ("error", "message", "detail"):
            value = info.get(field)
            if isinstance(value, str) and value:
                return value
    if isinstance(info, str) and info:
        return info
    return default
