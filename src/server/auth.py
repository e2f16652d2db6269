from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from fastmcp import Context

from teamsync.sync.dashboard import TeamDashboard
from teamsync.sync.session import SessionStore

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def get_dashboard(ctx: Context) -> TeamDashboard:
    return ctx.lifespan_context["dashboard"]


def get_session(ctx: Context) -> SessionStore:
    return get_dashboard(ctx).session


def _find_context(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Context | None:
    for arg in args:
        if isinstance(arg, Context):
            return arg
    for v in kwargs.values():
        if isinstance(v, Context):
            return v
    return None


def requires_role(*roles: str) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator enforcing the signed-in user's role at tool invocation time.

    The backend authorizes every write again; this check only keeps
    non-managers from issuing requests that are bound to fail.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            ctx = _find_context(args, kwargs)
            if ctx is None:
                raise PermissionError("No context available for authorization check")

            session = get_session(ctx)
            if session.token is None:
                raise PermissionError("Not signed in")

            role = session.user.role if session.user else None
            if role not in roles:
                logger.info("Denied %s for role %s", func.__name__, role)
                raise PermissionError(
                    f"Insufficient permissions. Required one of: {roles}, user has: {role}"
                )
            return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
