from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace

from teamsync.observability.config import TelemetryConfig
from teamsync.observability.logging import configure_logging

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)


def configure_telemetry(
    config: TelemetryConfig | None = None,
) -> TracerProvider | None:
    """Configure logging and the OpenTelemetry tracing pipeline.

    Returns the configured ``TracerProvider``, or ``None`` if telemetry is
    disabled, no endpoint is configured, or setup fails (in which case tracing
    degrades to no-ops).
    """
    if config is None:
        config = TelemetryConfig()
    config = config.resolve()

    configure_logging(
        config.log_level,
        include_trace_context=config.include_trace_context,
    )

    if not config.enabled:
        logger.info("Telemetry disabled (TEAMSYNC_OTEL_ENABLED=false)")
        return None

    if config.otlp_endpoint is None:
        logger.info("No OTLP endpoint configured; tracing will be no-op")
        return None

    try:
        provider = _build_provider(config, config.otlp_endpoint)
        trace.set_tracer_provider(provider)
        _auto_instrument(config, provider)
    except Exception:
        logger.exception("Failed to configure OTel telemetry; tracing will be no-op")
        return None

    return provider


def _build_provider(config: TelemetryConfig, endpoint: str) -> TracerProvider:
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider as _TracerProvider
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        SimpleSpanProcessor,
    )

    provider = _TracerProvider(
        resource=Resource.create({"service.name": config.service_name})
    )
    exporter = _build_exporter(config, endpoint)
    processor = BatchSpanProcessor(exporter) if config.batch else SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)

    logger.info("Configuring telemetry via OTel SDK (endpoint=%s)", endpoint)
    return provider


def _build_exporter(config: TelemetryConfig, endpoint: str):
    headers = dict(config.otlp_headers) or None

    if config.otlp_protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )

        return OTLPSpanExporter(endpoint=endpoint, headers=headers)

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter,
    )

    return OTLPSpanExporter(endpoint=endpoint, headers=headers)


def _auto_instrument(config: TelemetryConfig, provider: TracerProvider) -> None:
    if not config.instrument_httpx:
        return
    from opentelemetry.instrumentation.httpx import (  # type: ignore[import-untyped]
        HTTPXClientInstrumentor,
    )

    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    logger.debug("httpx auto-instrumentation enabled")
