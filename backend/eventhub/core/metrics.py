"""
Metrics instrumentation for the slot cache subsystem.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Read/write path metrics
slot_cache_operations = Counter(
    'slot_cache_operations_total',
    'Slot cache operations',
    ['operation', 'result']  # read: hit/miss/corrected/error, decrement: ok/noop/absent/invalidated/deferred
)

slot_cache_decrement_retries = Counter(
    'slot_cache_decrement_retries_total',
    'Slot decrement attempts that had to be retried'
)

# Population metrics
cache_population_events = Counter(
    'cache_population_events_total',
    'Events written to the slot cache by population runs'
)

cache_population_duration = Histogram(
    'cache_population_duration_seconds',
    'Full cache population duration',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Reconciliation metrics
reconcile_outcomes = Counter(
    'reconcile_outcomes_total',
    'Per-event reconciliation outcomes',
    ['outcome']  # consistent, fixed, errors, unavailable
)

reconcile_duration = Histogram(
    'reconcile_duration_seconds',
    'Reconciliation cycle duration',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Leader election metrics
leader_lock_attempts = Counter(
    'leader_lock_attempts_total',
    'Leader lock acquisition attempts',
    ['lock', 'result']  # acquired, contended, error
)

# Connection metrics
redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

redis_available = Gauge(
    'redis_available',
    'Redis availability as seen by this instance (1=ready, 0=unavailable)'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_slot_operation(operation: str, result: str):
    """Record a slot cache operation and its result."""
    slot_cache_operations.labels(operation=operation, result=result).inc()


def record_reconcile_outcome(outcome: str, count: int = 1):
    """Record reconciliation outcomes. Outcome: consistent, fixed, errors, unavailable"""
    if count:
        reconcile_outcomes.labels(outcome=outcome).inc(count)


def record_leader_attempt(lock: str, result: str):
    """Record leader lock attempt. Result: acquired, contended, error"""
    leader_lock_attempts.labels(lock=lock, result=result).inc()
