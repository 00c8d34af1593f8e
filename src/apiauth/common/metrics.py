"""Prometheus metrics for request authentication."""

import os
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match
from starlette.types import ASGIApp

# === Counters ===

AUTH_DECISIONS_TOTAL = Counter(
    "apiauth_auth_decisions_total",
    "Authentication decisions",
    ["outcome", "reason"],  # outcome: accepted, rejected, infrastructure_error
)

SIGNED_REQUESTS_TOTAL = Counter(
    "apiauth_signed_requests_total",
    "Outgoing requests signed by the client",
    ["method"],
)

HTTP_REQUESTS_TOTAL = Counter(
    "apiauth_http_requests_total",
    "HTTP requests by route template",
    ["method", "route", "status"],
)

# === Histograms ===

AUTH_LATENCY = Histogram(
    "apiauth_auth_latency_seconds",
    "Time spent validating a request signature",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
)

HTTP_REQUEST_LATENCY = Histogram(
    "apiauth_http_request_latency_seconds",
    "HTTP request latency by route template",
    ["method", "route"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# === Gauges ===

REPLAY_CACHE_ENTRIES = Gauge(
    "apiauth_replay_cache_entries",
    "Signatures currently held by the replay cache",
)


# === Helper Functions ===


def record_auth_decision(outcome: str, reason: str | None, latency: float) -> None:
    """Record an authentication decision."""
    AUTH_DECISIONS_TOTAL.labels(outcome=outcome, reason=reason or "none").inc()
    AUTH_LATENCY.observe(latency)


def record_signed_request(method: str) -> None:
    """Record an outgoing signed request."""
    SIGNED_REQUESTS_TOTAL.labels(method=method.upper()).inc()


def record_http_request(method: str, route: str, status: int, latency: float) -> None:
    """Record a served request against its route template."""
    HTTP_REQUESTS_TOTAL.labels(method=method, route=route, status=str(status)).inc()
    HTTP_REQUEST_LATENCY.labels(method=method, route=route).observe(latency)


def update_replay_cache_entries(count: int) -> None:
    """Update replay cache size gauge."""
    REPLAY_CACHE_ENTRIES.set(count)


def route_template(request: Request) -> str:
    """
    Route path template matching a request, e.g. ``/api/users/{username}``.

    Usernames appear in paths; labelling by template keeps the series count
    bounded. Unmatched paths share the ``unmatched`` label.
    """
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", "unmatched")
    return "unmatched"


# === HTTP Endpoint ===


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times requests, including ones rejected by authentication."""

    def __init__(self, app: ASGIApp, exclude_paths: list[str] | None = None) -> None:
        super().__init__(app)
        self._exclude_paths = set(exclude_paths or [])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exclude_paths:
            return await call_next(request)

        route = route_template(request)
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            record_http_request(request.method, route, status, time.perf_counter() - start)


async def metrics_endpoint(_request: Request) -> Response:
    """Prometheus metrics in text exposition format."""
    registry = None
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)  # type: ignore[no-untyped-call]
    payload = generate_latest(registry) if registry is not None else generate_latest()
    return Response(payload, media_type=CONTENT_TYPE_LATEST)
