from __future__ import annotations

import json
import os
import time
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import StatusCode

P = ParamSpec("P")
R = TypeVar("R")

_TRACER_NAME = "teamsync"

AsyncFn = Callable[P, Coroutine[Any, Any, R]]


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer scoped to the given name (or the default)."""
    return trace.get_tracer(name or _TRACER_NAME)


def _span_decorator(
    span_name: str,
    attributes: dict[str, str],
    *,
    capture_io: bool = False,
) -> Callable[[AsyncFn], AsyncFn]:
    def decorator(fn: AsyncFn) -> AsyncFn:
        tracer = get_tracer()

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with tracer.start_as_current_span(span_name) as span:
                for attr, value in attributes.items():
                    span.set_attribute(attr, value)
                if capture_io and kwargs:
                    span.set_attribute("input.value", _safe_serialize(kwargs))

                try:
                    result = await fn(*args, **kwargs)
                except Exception as exc:
                    span.set_status(StatusCode.ERROR, str(exc))
                    span.record_exception(exc)
                    raise

                if capture_io and result is not None:
                    span.set_attribute("output.value", _safe_serialize(result))
                return result

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Mutation tracing
# ---------------------------------------------------------------------------


def traced_mutation(name: str) -> Callable[[AsyncFn], AsyncFn]:
    """Wrap a Mutation Executor operation in a ``mutation {name}`` span.

    Usage::

        @traced_mutation("approve")
        async def approve(self, leave_id: str) -> MutationResult:
            ...
    """
    return _span_decorator(
        f"mutation {name}",
        {"teamsync.mutation": name},
        capture_io=_should_capture_io(None),
    )


# ---------------------------------------------------------------------------
# Host (MCP) tracing
# ---------------------------------------------------------------------------


def traced_tool(
    *,
    name: str | None = None,
    capture_io: bool | None = None,
) -> Callable[[AsyncFn], AsyncFn]:
    """Wrap an MCP tool handler in a ``tools/call {name}`` span."""

    def decorator(fn: AsyncFn) -> AsyncFn:
        tool_name = name or fn.__name__
        return _span_decorator(
            f"tools/call {tool_name}",
            {"mcp.method.name": "tools/call", "rpc.system": "mcp", "tool.name": tool_name},
            capture_io=_should_capture_io(capture_io),
        )(fn)

    return decorator


def traced_resource(*, uri: str) -> Callable[[AsyncFn], AsyncFn]:
    """Wrap an MCP resource handler in a ``resources/read {uri}`` span."""
    return _span_decorator(
        f"resources/read {uri}",
        {"mcp.method.name": "resources/read", "rpc.system": "mcp", "mcp.resource.uri": uri},
    )


# ---------------------------------------------------------------------------
# Cache operation tracing (context manager)
# ---------------------------------------------------------------------------


class traced_cache_operation:
    """Context manager that creates an OTel span for cache operations.

    Usage::

        async with traced_cache_operation("fetch", key="approvals") as span:
            value = await loader()
            span.set_attribute("cache.attempt", attempt)
    """

    def __init__(
        self,
        operation: str,
        *,
        key: str | None = None,
    ) -> None:
        self._operation = operation
        self._key = key
        self._tracer = get_tracer()
        self._span: trace.Span | None = None
        self._scope: Any = None
        self._start: float = 0.0

    async def __aenter__(self) -> trace.Span:
        self._start = time.monotonic()
        self._span = self._tracer.start_span(f"cache.{self._operation}")
        self._scope = trace.use_span(
            self._span,
            end_on_exit=False,
            record_exception=False,
            set_status_on_exception=False,
        )
        self._scope.__enter__()

        self._span.set_attribute("cache.operation", self._operation)
        if self._key is not None:
            self._span.set_attribute("cache.key", self._key)
        return self._span

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        assert self._span is not None

        elapsed = time.monotonic() - self._start
        self._span.set_attribute("cache.duration_ms", round(elapsed * 1000, 2))

        if exc_val is not None:
            self._span.set_status(StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)

        self._scope.__exit__(exc_type, exc_val, exc_tb)
        self._span.end()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _should_capture_io(explicit: bool | None) -> bool:
    if explicit is not None:
        return explicit
    return os.getenv("TEAMSYNC_OTEL_CAPTURE_IO", "false").lower() in (
        "true",
        "1",
        "yes",
    )


def _safe_serialize(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)
