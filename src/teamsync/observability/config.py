from __future__ import annotations

import os

from pydantic import BaseModel, Field


class TelemetryConfig(BaseModel):
    """Configuration for logging and OpenTelemetry export."""

    service_name: str = Field(
        default="teamsync",
        description="OTel service name. Falls back to TEAMSYNC_OTEL_SERVICE_NAME env var.",
    )
    enabled: bool = Field(
        default=True,
        description="Master switch for OTel instrumentation. Falls back to TEAMSYNC_OTEL_ENABLED.",
    )
    otlp_endpoint: str | None = Field(
        default=None,
        description=(
            "OTLP collector endpoint (e.g. http://localhost:4317). "
            "Falls back to OTEL_EXPORTER_OTLP_ENDPOINT env var."
        ),
    )
    otlp_protocol: str = Field(
        default="grpc",
        description="OTLP protocol: 'grpc' or 'http/protobuf'.",
    )
    otlp_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers for the OTLP exporter (e.g. auth tokens).",
    )
    log_level: str = Field(
        default="INFO",
        description="Python logging level. Falls back to TEAMSYNC_LOG_LEVEL env var.",
    )
    include_trace_context: bool = Field(
        default=True,
        description="Stamp trace/span ids on every log line.",
    )
    batch: bool = Field(
        default=True,
        description="Use BatchSpanProcessor (True) or SimpleSpanProcessor (False).",
    )
    instrument_httpx: bool = Field(
        default=True,
        description="Auto-instrument httpx.AsyncClient calls made by the API client.",
    )

    def resolve(self) -> TelemetryConfig:
        """Return a copy with env-var fallbacks applied."""
        return self.model_copy(
            update={
                "enabled": _env_bool("TEAMSYNC_OTEL_ENABLED", self.enabled),
                "otlp_endpoint": self.otlp_endpoint
                or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
                "otlp_protocol": os.getenv(
                    "OTEL_EXPORTER_OTLP_PROTOCOL", self.otlp_protocol
                ),
                "log_level": os.getenv("TEAMSYNC_LOG_LEVEL", self.log_level),
                "service_name": os.getenv(
                    "TEAMSYNC_OTEL_SERVICE_NAME", self.service_name
                ),
            }
        )


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")
