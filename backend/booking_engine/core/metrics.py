"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# HTTP metrics
http_requests = Counter(
    'http_requests_total',
    'HTTP requests handled',
    ['method', 'status_class']  # 2xx, 4xx, 5xx
)

http_request_latency = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Booking lifecycle metrics
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking lifecycle transitions',
    ['transition']  # initiated, confirmed, cancelled, refunded, expired, deleted, checked_in
)

booking_latency = Histogram(
    'booking_initiate_latency_seconds',
    'Booking initiation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Seat inventory metrics
seat_reservations = Counter(
    'seat_reservations_total',
    'Seat reservation attempts',
    ['result']  # reserved, conflict
)

# Background task metrics
scheduler_runs = Counter(
    'scheduler_runs_total',
    'Periodic task executions',
    ['task', 'result']  # success, error, skipped
)

expired_holds = Counter(
    'expired_holds_total',
    'Bookings expired by the reservation sweep'
)

orphaned_seats_released = Counter(
    'orphaned_seats_released_total',
    'Blocked seats released by reconciliation because no live booking owned them'
)

show_status_changes = Counter(
    'show_status_changes_total',
    'Show status transitions applied by the status scheduler',
    ['status']
)

scheduler_in_progress = Gauge(
    'scheduler_in_progress',
    'Whether a periodic task run is currently in progress',
    ['task']
)

# Pricing metrics
coupon_validations = Counter(
    'coupon_validations_total',
    'Coupon validation outcomes',
    ['result']  # valid, invalid
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

payment_gateway_errors = Counter(
    'payment_gateway_errors_total',
    'Payment gateway failures',
    ['operation']  # initiate, verify, refund
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_http_request(method: str, status_code: int, duration_seconds: float):
    http_requests.labels(method=method, status_class=f"{status_code // 100}xx").inc()
    http_request_latency.observe(duration_seconds)


def record_booking_transition(transition: str):
    booking_transitions.labels(transition=transition).inc()


def record_seat_reservation(reserved: bool):
    result = "reserved" if reserved else "conflict"
    seat_reservations.labels(result=result).inc()


def record_scheduler_run(task: str, result: str):
    """Result: success, error, skipped"""
    scheduler_runs.labels(task=task, result=result).inc()


def record_coupon_validation(valid: bool):
    coupon_validations.labels(result="valid" if valid else "invalid").inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
