"""Application metrics (Prometheus client library).

Single inventory of everything the service measures.  Other modules
import a metric and increment/observe it at the point of action.

Counters answer "how often" (rate() in PromQL), gauges answer "how much
right now", histograms give percentiles.  The pipeline counters below
are labelled by outcome so a dashboard can plot e.g. the share of
download attempts rejected for quota versus expiry.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, route template, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Entitlement pipeline
# ---------------------------------------------------------------------------

PAYMENT_TRANSITIONS = Counter(
    "payment_status_transitions_total",
    "Ledger status transitions actually applied",
    ["order_kind", "status"],  # order_kind: course|digital
)

GRANTS = Counter(
    "entitlement_grants_total",
    "Access grants created (re-driven no-op grants are not counted)",
    ["kind"],  # enrollment|download_tokens
)

CERTIFICATES = Counter(
    "certificate_issuance_total",
    "Certificate issuance attempts by outcome",
    ["outcome"],  # issued|existing|failed
)

DOWNLOADS = Counter(
    "download_consumptions_total",
    "Download consumption attempts by outcome",
    ["outcome"],  # ok|quota_exceeded|expired
)

# ---------------------------------------------------------------------------
# Background work
# ---------------------------------------------------------------------------

JOBS_PUBLISHED = Counter(
    "jobs_published_total",
    "Background jobs published after commit, by queue and result",
    ["queue", "result"],  # result: ok|error
)

TASKS_PROCESSED = Counter(
    "tasks_processed_total",
    "Tasks handled by the worker, by queue and result",
    ["queue", "result"],  # result: ok|retried|dead_lettered
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
