"""Prometheus metrics. Event counters keep the names the event handler has always exported."""
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

WORKER_REQUESTS_TOTAL = Counter(
    "worker_http_requests_total",
    "Worker HTTP requests (probes and scrapes excluded)",
    ["method", "path", "status_class"],
)
WORKER_REQUEST_SECONDS = Histogram(
    "worker_http_request_duration_seconds",
    "Worker HTTP request latency",
    ["path"],
    buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0),
)
PROCESSED_EVENTS_TOTAL = Counter(
    "processed_events_total",
    "Objects registered from change notifications",
)
PROCESSING_ERRORS_TOTAL = Counter(
    "processing_errors_total",
    "Ingestion failures",
    ["reason"],  # missing_metadata | registration | storage | message | ack | poll
)
SKIPPED_EVENTS_TOTAL = Counter(
    "skipped_events_total",
    "Change notifications acknowledged without registration",
    ["reason"],  # outside_prefix | foreign_bucket
)
REGISTRATION_LATENCY = Histogram(
    "registration_duration_seconds",
    "Advertise call latency",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
UPLOAD_GRANTS_TOTAL = Counter(
    "upload_grants_issued_total",
    "Upload grants issued",
    ["provider", "strategy"],
)
RESOLUTIONS_TOTAL = Counter(
    "advertisement_resolutions_total",
    "Advertisement lookups",
    ["result"],  # found | not_found | expired
)


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    # The worker has a handful of fixed routes, so raw paths are bounded cardinality
    WORKER_REQUESTS_TOTAL.labels(method=method, path=path or "/", status_class=f"{status_code // 100}xx").inc()
    WORKER_REQUEST_SECONDS.labels(path=path or "/").observe(latency_seconds)


def record_event_processed() -> None:
    PROCESSED_EVENTS_TOTAL.inc()


def record_processing_error(reason: str) -> None:
    PROCESSING_ERRORS_TOTAL.labels(reason=reason).inc()


def record_event_skipped(reason: str) -> None:
    SKIPPED_EVENTS_TOTAL.labels(reason=reason).inc()


def record_registration_latency(latency_seconds: float) -> None:
    REGISTRATION_LATENCY.observe(latency_seconds)


def record_upload_grant(provider: str, strategy: str) -> None:
    UPLOAD_GRANTS_TOTAL.labels(provider=provider, strategy=strategy).inc()


def record_resolution(result: str) -> None:
    RESOLUTIONS_TOTAL.labels(result=result).inc()


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
