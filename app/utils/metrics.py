"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
content_deliveries_total = Counter(
    "content_deliveries_total",
    "Content delivery decisions",
    ["key_class", "outcome"],  # granted, not_found, unauthenticated, unknown_user, not_purchased, blob_missing
)

blob_missing_total = Counter(
    "blob_missing_total",
    "Cataloged keys with no backing object in the blob store",
)

purchase_confirmations_total = Counter(
    "purchase_confirmations_total",
    "Purchase confirmation attempts",
    ["outcome"],  # completed, conflict, expired, failed, not_found, upstream_error
)

purchases_expired_total = Counter(
    "purchases_expired_total",
    "Pending purchases moved to expired by the sweeper",
)

notifications_created_total = Counter(
    "notifications_created_total",
    "Notifications created",
    ["category"],
)

notifications_pruned_total = Counter(
    "notifications_pruned_total",
    "Notifications deleted by the per-user retention policy",
)

settlement_rpc_requests_total = Counter(
    "settlement_rpc_requests_total",
    "Settlement RPC requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
settlement_rpc_duration_seconds = Histogram(
    "settlement_rpc_duration_seconds",
    "Settlement RPC request duration",
    ["method"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
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
