"""
Prometheus metrics middleware for the intent engine API.

Exposes /metrics endpoint with request counters, latency histograms,
and intent engine metrics.
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST,
)
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "intent_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "intent_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
ACTIVE_REQUESTS = Gauge(
    "intent_http_active_requests",
    "Currently active HTTP requests",
)

# Engine metrics
TURNS_APPLIED = Counter(
    "intent_turns_applied_total",
    "Turns applied, by resulting stage",
    ["stage"],
)
INTENT_SCORE_HIST = Histogram(
    "intent_score",
    "Purchase intent score after each turn",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)
PERSISTENCE_FAILURES = Counter(
    "intent_persistence_failures_total",
    "Failed repository calls",
    ["operation"],
)


def record_turn(score: int, stage: str):
    """Record an applied turn."""
    TURNS_APPLIED.labels(stage=stage).inc()
    INTENT_SCORE_HIST.observe(score)


def record_persistence_failure(operation: str):
    """Record a persistence failure surfaced to a client."""
    PERSISTENCE_FAILURES.labels(operation=operation).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        finally:
            ACTIVE_REQUESTS.dec()

        duration = time.time() - start
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
