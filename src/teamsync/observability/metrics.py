from __future__ import annotations

from dataclasses import dataclass, field

from opentelemetry import metrics

_METER_NAME = "teamsync"


@dataclass(frozen=True)
class SyncMetrics:
    """Container for the data layer's metric instruments.

    Without an SDK meter provider every instrument is a no-op, so components
    record unconditionally.
    """

    # --- Fetch Coordinator ---
    fetch_duration: metrics.Histogram = field(repr=False)
    fetch_total: metrics.Counter = field(repr=False)
    fetch_retries: metrics.Counter = field(repr=False)
    dedupe_hits: metrics.Counter = field(repr=False)
    stale_discards: metrics.Counter = field(repr=False)

    # --- Mutation Executor ---
    mutation_duration: metrics.Histogram = field(repr=False)
    mutation_total: metrics.Counter = field(repr=False)

    # --- Prefetch Manager ---
    prefetch_total: metrics.Counter = field(repr=False)


def create_sync_metrics(meter_name: str | None = None) -> SyncMetrics:
    """Create the metric instruments (OTel de-duplicates by name)."""
    meter = metrics.get_meter(meter_name or _METER_NAME)

    return SyncMetrics(
        fetch_duration=meter.create_histogram(
            name="teamsync.fetch.duration",
            description="Duration of loader invocations per cache key",
            unit="s",
        ),
        fetch_total=meter.create_counter(
            name="teamsync.fetch.total",
            description="Loader invocations by cache key and outcome",
        ),
        fetch_retries=meter.create_counter(
            name="teamsync.fetch.retries",
            description="Automatic retries after a failed fetch",
        ),
        dedupe_hits=meter.create_counter(
            name="teamsync.fetch.dedupe_hits",
            description="Revalidations collapsed into an earlier request",
        ),
        stale_discards=meter.create_counter(
            name="teamsync.fetch.stale_discards",
            description="Responses dropped because the session token changed in flight",
        ),
        mutation_duration=meter.create_histogram(
            name="teamsync.mutation.duration",
            description="Duration of remote writes including cache reconciliation",
            unit="s",
        ),
        mutation_total=meter.create_counter(
            name="teamsync.mutation.total",
            description="Mutations by name and outcome",
        ),
        prefetch_total=meter.create_counter(
            name="teamsync.prefetch.total",
            description="Background prefetches and preloads by outcome",
        ),
    )
