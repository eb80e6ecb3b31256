"""
Prometheus metrics endpoint.

Exposes webhook delivery metrics for monitoring. Disabled subscriptions and
exhausted deliveries are surfaced to operators through these counters.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# Dispatch Metrics
# ============================================

webhook_triggers = Counter(
    'webhook_triggers_total',
    'Total events triggered by business modules',
    ['event']
)

webhook_jobs_enqueued = Counter(
    'webhook_jobs_enqueued_total',
    'Total delivery jobs enqueued (first attempts and retries)',
    ['event', 'kind']
)

# ============================================
# Delivery Metrics
# ============================================

webhook_attempts = Counter(
    'webhook_attempts_total',
    'Total delivery attempts by outcome',
    ['tenant_id', 'status']
)

webhook_delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Outbound webhook request duration in seconds',
    ['status'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhook_deliveries_exhausted = Counter(
    'webhook_deliveries_exhausted_total',
    'Deliveries that failed after their last allowed attempt',
    ['tenant_id']
)

webhook_jobs_skipped = Counter(
    'webhook_jobs_skipped_total',
    'Jobs dropped because the subscription is missing or not active',
    ['reason']
)

# ============================================
# Circuit Breaker Metrics
# ============================================

webhook_circuit_trips = Counter(
    'webhook_circuit_breaker_trips_total',
    'Subscriptions disabled after consecutive failures',
    ['tenant_id']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_trigger(event: str):
    """Record an event entering the dispatcher."""
    webhook_triggers.labels(event=event).inc()


def track_job_enqueued(event: str, retry: bool = False):
    """Record a delivery job being queued."""
    webhook_jobs_enqueued.labels(event=event, kind="retry" if retry else "initial").inc()


def track_attempt(tenant_id: str, status: str, duration_seconds: float):
    """Record the outcome of one delivery attempt."""
    webhook_attempts.labels(tenant_id=tenant_id, status=status).inc()
    webhook_delivery_duration.labels(status=status).observe(duration_seconds)


def track_delivery_exhausted(tenant_id: str):
    """Record a delivery that ran out of retries."""
    webhook_deliveries_exhausted.labels(tenant_id=tenant_id).inc()


def track_job_skipped(reason: str):
    """Record a job skipped before any attempt was made."""
    webhook_jobs_skipped.labels(reason=reason).inc()


def track_circuit_trip(tenant_id: str):
    """Record the circuit breaker disabling a subscription."""
    webhook_circuit_trips.labels(tenant_id=tenant_id).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
