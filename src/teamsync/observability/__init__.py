from __future__ import annotations

from teamsync.observability.config import TelemetryConfig
from teamsync.observability.logging import TraceContextFilter, configure_logging
from teamsync.observability.metrics import SyncMetrics, create_sync_metrics
from teamsync.observability.setup import configure_telemetry
from teamsync.observability.tracing import (
    get_tracer,
    traced_cache_operation,
    traced_mutation,
    traced_resource,
    traced_tool,
)

__all__ = [
    "TelemetryConfig",
    "configure_telemetry",
    "configure_logging",
    "TraceContextFilter",
    "get_tracer",
    "traced_cache_operation",
    "traced_mutation",
    "traced_resource",
    "traced_tool",
    "create_sync_metrics",
    "SyncMetrics",
]
