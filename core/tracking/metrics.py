"""Prometheus counters for the ingestion pipeline (exposed at /metrics)."""

from prometheus_client import Counter, Histogram

video_batches_total = Counter(
    "video_batches_total",
    "Event batches accepted by the ingestion endpoint",
    ["outcome"],  # applied, duplicate, heartbeat
)

video_batches_failed_total = Counter(
    "video_batches_failed_total",
    "Event batches rejected or failed during ingestion",
    ["reason"],  # unauthenticated, session_mismatch, validation, timeout, conflict, error
)

video_events_ingested_total = Counter(
    "video_events_ingested_total",
    "Playback events applied to progress records",
    ["kind"],
)

video_anomaly_flags_total = Counter(
    "video_anomaly_flags_total",
    "Anomaly flags counted against progress records",
    ["flag"],
)

video_views_registered_total = Counter(
    "video_views_registered_total",
    "Watched markers created on the first transition to completed",
)

video_ingest_duration_seconds = Histogram(
    "video_ingest_duration_seconds",
    "Time to validate and apply one event batch",
)


def record_failure(reason: str) -> None:
    video_batches_failed_total.labels(reason=reason).inc()


def record_outcome(outcome: str) -> None:
    video_batches_total.labels(outcome=outcome).inc()
