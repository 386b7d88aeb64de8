"""
Prometheus metrics for monitoring and observability.

Provides counters, histograms, and gauges for tracking:
- Queue message handling
- Ingest duration per media kind
- External job submission and reconciliation
- Dead-letter depth
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
)

# Create a global registry
REGISTRY = CollectorRegistry()

# ========== Counters ==========

queue_messages_total = Counter(
    "queue_messages_total",
    "Total number of queue messages handled",
    ["queue", "outcome"],  # acked/retried/dead_lettered
    registry=REGISTRY,
)

external_jobs_submitted_total = Counter(
    "external_jobs_submitted_total",
    "Total number of external jobs submitted",
    ["kind"],  # video_moderation/video_transcode
    registry=REGISTRY,
)

reconciliations_total = Counter(
    "reconciliations_total",
    "Total number of external job outcomes reconciled",
    ["kind", "outcome"],  # succeeded/failed/in_progress/discarded
    registry=REGISTRY,
)

# ========== Histograms ==========

ingest_duration_seconds = Histogram(
    "ingest_duration_seconds",
    "Time spent in a single ingest attempt",
    ["kind"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

# ========== Gauges ==========

dead_letter_queue_depth = Gauge(
    "dead_letter_queue_depth",
    "Number of dead-lettered messages awaiting inspection",
    ["queue"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Text exposition of every mediaflow metric."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
