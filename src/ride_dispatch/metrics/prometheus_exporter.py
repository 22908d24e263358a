"""Prometheus metrics for the dispatch core."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

# Use a separate registry to avoid default Python metrics
REGISTRY = CollectorRegistry()

# --- Gauges (point-in-time values) ---

dispatch_watchers_active = Gauge(
    "dispatch_watchers_active",
    "Live pending/active watch streams",
    ["kind"],
    registry=REGISTRY,
)

dispatch_drivers_indexed = Gauge(
    "dispatch_drivers_indexed",
    "Online drivers held in the geospatial index",
    registry=REGISTRY,
)

# --- Counters (cumulative values) ---

dispatch_accept_total = Counter(
    "dispatch_accept_total",
    "Accept attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

dispatch_transitions_total = Counter(
    "dispatch_transitions_total",
    "Ride status transitions applied",
    ["status"],
    registry=REGISTRY,
)

dispatch_settlements_total = Counter(
    "dispatch_settlements_total",
    "Settlements by result",
    ["result"],
    registry=REGISTRY,
)

dispatch_settled_fare_total = Counter(
    "dispatch_settled_fare_inr_total",
    "Sum of fares credited to driver wallets",
    registry=REGISTRY,
)

dispatch_ratings_total = Counter(
    "dispatch_ratings_total",
    "Rider ratings aggregated",
    ["rating"],
    registry=REGISTRY,
)

dispatch_fare_estimates_total = Counter(
    "dispatch_fare_estimates_total",
    "Fare estimates by source (routed or fallback)",
    ["source"],
    registry=REGISTRY,
)

dispatch_notifications_total = Counter(
    "dispatch_notifications_total",
    "Notifications handed to the notifier, by kind and whether suppressed as duplicate",
    ["kind", "deduplicated"],
    registry=REGISTRY,
)

dispatch_errors_total = Counter(
    "dispatch_errors_total",
    "Total errors by component and type",
    ["component", "error_type"],
    registry=REGISTRY,
)

# --- Histograms (latency distributions) ---

STORE_LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, float("inf"))
ROUTING_LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, float("inf"))

dispatch_store_latency_seconds = Histogram(
    "dispatch_store_latency_seconds",
    "Store transaction latency in seconds",
    ["operation"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=REGISTRY,
)

dispatch_routing_latency_seconds = Histogram(
    "dispatch_routing_latency_seconds",
    "Route service request latency in seconds",
    buckets=ROUTING_LATENCY_BUCKETS,
    registry=REGISTRY,
)


def record_accept(outcome: str) -> None:
    dispatch_accept_total.labels(outcome=outcome).inc()


def record_transition(status: str) -> None:
    dispatch_transitions_total.labels(status=status).inc()


def record_settlement(result: str, fare: int = 0) -> None:
    dispatch_settlements_total.labels(result=result).inc()
    if fare:
        dispatch_settled_fare_total.inc(fare)


def record_rating(rating: int) -> None:
    dispatch_ratings_total.labels(rating=str(rating)).inc()


def record_fare_estimate(source: str) -> None:
    dispatch_fare_estimates_total.labels(source=source).inc()


def record_notification(kind: str, deduplicated: bool) -> None:
    dispatch_notifications_total.labels(kind=kind, deduplicated=str(deduplicated).lower()).inc()


def record_store_error(error_type: str) -> None:
    dispatch_errors_total.labels(component="store", error_type=error_type).inc()


def record_feed_error(error_type: str) -> None:
    dispatch_errors_total.labels(component="change_feed", error_type=error_type).inc()


def record_routing_error(error_type: str) -> None:
    dispatch_errors_total.labels(component="routing", error_type=error_type).inc()


def observe_latency(component: str, latency_ms: float, operation: str = "") -> None:
    """Observe a latency sample for histogram tracking.

    Args:
        component: One of "store", "routing"
        latency_ms: Latency in milliseconds
        operation: Store operation name (store samples only)
    """
    latency_seconds = latency_ms / 1000.0

    if component == "store":
        dispatch_store_latency_seconds.labels(operation=operation or "unknown").observe(
            latency_seconds
        )
    elif component == "routing":
        dispatch_routing_latency_seconds.observe(latency_seconds)


def generate_prometheus_metrics() -> bytes:
    """Generate Prometheus format metrics output.

    Returns:
        Prometheus text format as bytes
    """
    result: bytes = generate_latest(REGISTRY)
    return result
