"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
generation_requests_total = Counter(
    "generation_requests_total",
    "Generation requests by final state",
    ["theme", "state"],  # completed, partially_completed, failed, rejected
)

generation_units_total = Counter(
    "generation_units_total",
    "Individual provider calls within a generation fan-out",
    ["status"],  # ok, error, timeout
)

credit_operations_total = Counter(
    "credit_operations_total",
    "Total credit ledger operations",
    ["operation"],  # reserve, refund, credit, consume
)

credit_update_retries_total = Counter(
    "credit_update_retries_total",
    "Conditional balance updates retried after a lock or serialization error",
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total reservations rejected for insufficient credits",
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Payment webhook deliveries",
    ["event_type", "outcome"],  # processed, ignored, duplicate, rejected
)

storage_failures_total = Counter(
    "storage_failures_total",
    "Object storage operations that failed",
    ["operation"],  # put, delete
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
generation_duration_seconds = Histogram(
    "generation_duration_seconds",
    "Whole generation request duration (reserve to settle)",
    buckets=[1, 5, 10, 30, 60, 120, 300],
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Image provider request duration",
    ["provider"],
    buckets=[1, 5, 10, 30, 60, 120],
)

# Gauges
active_generations = Gauge(
    "active_generations",
    "Generation requests currently in flight",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
