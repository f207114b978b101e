"""
Prometheus metrics endpoint.

Exposes redirect, click and webhook metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# ============================================
# Redirect Metrics
# ============================================

redirects_total = Counter(
    'redirects_total',
    'Slug resolutions by outcome',
    ['outcome']
)

# ============================================
# Click Metrics
# ============================================

clicks_recorded = Counter(
    'clicks_recorded_total',
    'Click rows written'
)

click_tracking_failed = Counter(
    'click_tracking_failed_total',
    'Background click pipeline failures',
    ['stage']
)

geo_lookups_failed = Counter(
    'geo_lookups_failed_total',
    'Geo lookups that returned no location',
    ['reason']
)

# ============================================
# Milestone & Webhook Metrics
# ============================================

milestones_reached = Counter(
    'milestones_reached_total',
    'Click milestones claimed by a link',
    ['milestone']
)

webhooks_sent = Counter(
    'webhooks_sent_total',
    'Webhook delivery attempts',
    ['platform', 'status']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_redirect(outcome: str):
    """Record how a slug resolved."""
    redirects_total.labels(outcome=outcome).inc()


def track_click_recorded():
    """Record a stored click."""
    clicks_recorded.inc()


def track_click_failure(stage: str):
    """Record a swallowed failure in the click pipeline."""
    click_tracking_failed.labels(stage=stage).inc()


def track_geo_lookup_failed(reason: str):
    """Record a geo lookup that degraded to no location."""
    geo_lookups_failed.labels(reason=reason).inc()


def track_milestone_reached(milestone: int):
    """Record a milestone being claimed."""
    milestones_reached.labels(milestone=str(milestone)).inc()


def track_webhook_sent(platform: str, status: str):
    """Record a webhook delivery attempt."""
    webhooks_sent.labels(platform=platform, status=status).inc()


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
