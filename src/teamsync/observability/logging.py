from __future__ import annotations

import logging
import sys

from opentelemetry import trace

_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_TRACE_FORMAT = "%(asctime)s [%(trace_id)s/%(span_id)s] %(name)s %(levelname)s %(message)s"


class TraceContextFilter(logging.Filter):
    """Stamp the active span's trace/span ids onto each log record.

    Records emitted outside a span get empty ids, so the format string stays
    valid for background timers and polling ticks.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        has_span = bool(ctx and ctx.trace_id)
        record.trace_id = format(ctx.trace_id, "032x") if has_span else ""  # type: ignore[attr-defined]
        record.span_id = format(ctx.span_id, "016x") if has_span else ""  # type: ignore[attr-defined]
        return True


def configure_logging(
    level: str = "INFO",
    *,
    include_trace_context: bool = True,
    stream: object | None = None,
) -> None:
    """Install a single stream handler on the root logger.

    Args:
        level: Logging level name (e.g. ``"INFO"``, ``"DEBUG"``).
        include_trace_context: Whether to add trace/span IDs to log records.
        stream: Output stream (defaults to ``sys.stderr``).
    """
    handler = logging.StreamHandler(stream or sys.stderr)  # type: ignore[arg-type]
    handler.setFormatter(
        logging.Formatter(_TRACE_FORMAT if include_trace_context else _FORMAT)
    )
    if include_trace_context:
        handler.addFilter(TraceContextFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    # httpx logs every request at INFO; polling makes that noise.
    logging.getLogger("httpx").setLevel(logging.WARNING)
