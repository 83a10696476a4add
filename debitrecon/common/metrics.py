"""Prometheus metric definitions for the direct-debit engine."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


presentment_batches_total = Counter(
    "presentment_batches_total",
    "Outbound presentment batches by final status",
    ["service", "status"],
)
presentment_rows_total = Counter("presentment_rows_total", "Rows written to presentment files", ["service"])
presentment_build_seconds = Histogram(
    "presentment_build_seconds",
    "Seconds spent building and uploading one presentment file",
    ["service", "adapter"],
)
response_rows_total = Counter(
    "response_rows_total",
    "Bank response rows processed by resulting item status",
    ["service", "status"],
)
duplicate_imports_skipped_total = Counter(
    "duplicate_imports_skipped_total",
    "Byte-identical response files answered from the prior import",
    ["service"],
)
fiscal_issuance_total = Counter(
    "fiscal_issuance_total",
    "Fiscal issuance calls after collection by outcome",
    ["service", "outcome"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)


def metrics_response() -> Response:
    """Current registry in the Prometheus text exposition format."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
