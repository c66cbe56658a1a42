"""
Prometheus Metrics Module.

This module exposes HTTP request metrics and pipeline bookkeeping counters:
rate-limit decisions, auth gate outcomes, audit writes and stage failures
isolated by the composer.

Pattern: Metrics collection for observability

Dynamic path segments (UUIDs, numeric and hex IDs) are normalized to {id}
so user-scoped routes such as /api/users/<uuid> do not explode label
cardinality.
"""

import re
import time
from typing import Any, Callable, Optional

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# =============================================================================
# Path Normalization
# =============================================================================

# Order matters: more specific patterns first
_PATH_PATTERNS = [
    (re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"), "/{id}"),
    (re.compile(r"/[0-9a-fA-F]{8,}(?=/|$)"), "/{id}"),
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
]


def normalize_path(path: str) -> str:
    """
    Normalize a URL path by replacing dynamic segments with placeholders.

    Examples:
        >>> normalize_path("/api/health")
        '/api/health'
        >>> normalize_path("/api/users/123e4567-e89b-12d3-a456-426614174000")
        '/api/users/{id}'
        >>> normalize_path("/api/users/12345")
        '/api/users/{id}'
    """
    if path == "/":
        return path

    normalized = path
    for pattern, replacement in _PATH_PATTERNS:
        normalized = pattern.sub(replacement, normalized)

    return normalized


# =============================================================================
# HTTP Metrics
# =============================================================================

REQUESTS_TOTAL = Counter(
    name="api_guard_requests_total",
    documentation="Total number of HTTP requests",
    labelnames=["method", "path", "status"],
)

REQUEST_DURATION_SECONDS = Histogram(
    name="api_guard_request_duration_seconds",
    documentation="HTTP request duration in seconds",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

REQUESTS_IN_PROGRESS = Gauge(
    name="api_guard_requests_in_progress",
    documentation="Number of HTTP requests currently being processed",
    labelnames=["method"],
)

# =============================================================================
# Pipeline Metrics
# =============================================================================

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    name="api_guard_rate_limit_decisions_total",
    documentation="Rate limiter decisions (allowed, denied, fail_open)",
    labelnames=["decision"],
)

AUTH_OUTCOMES_TOTAL = Counter(
    name="api_guard_auth_outcomes_total",
    documentation="Auth gate outcomes (accepted, missing, invalid, forbidden, error)",
    labelnames=["outcome"],
)

AUDIT_WRITES_TOTAL = Counter(
    name="api_guard_audit_writes_total",
    documentation="Audit sink writes by result (written, failed)",
    labelnames=["result"],
)

STAGE_ERRORS_TOTAL = Counter(
    name="api_guard_stage_errors_total",
    documentation="Stage failures isolated by the pipeline composer",
    labelnames=["stage"],
)


def record_rate_limit_decision(decision: str) -> None:
    """Record a rate limiter decision ("allowed", "denied" or "fail_open")."""
    RATE_LIMIT_DECISIONS_TOTAL.labels(decision=decision).inc()


def record_auth_outcome(outcome: str) -> None:
    """Record an auth gate outcome ("ok", "401", "403", "500")."""
    AUTH_OUTCOMES_TOTAL.labels(outcome=outcome).inc()


def record_audit_write(result: str) -> None:
    """Record an audit sink write ("written" or "failed")."""
    AUDIT_WRITES_TOTAL.labels(result=result).inc()


def record_stage_error(stage: str) -> None:
    """Record a stage failure that the composer isolated."""
    STAGE_ERRORS_TOTAL.labels(stage=stage).inc()


# =============================================================================
# MetricsMiddleware ASGI Middleware
# =============================================================================


class MetricsMiddleware:
    """
    ASGI middleware for Prometheus request metrics.

    This middleware:
    - Increments request counter per method/path/status
    - Records request latency histogram
    - Tracks in-progress requests gauge
    - Excludes the metrics path itself
    """

    def __init__(
        self,
        app: Callable[..., Any],
        exclude_paths: Optional[list[str]] = None,
    ) -> None:
        self.app = app
        self.exclude_paths = exclude_paths or ["/api/metrics"]

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        raw_path = scope.get("path", "/")

        if raw_path in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        path = normalize_path(raw_path)

        REQUESTS_IN_PROGRESS.labels(method=method).inc()
        start_time = time.perf_counter()
        status_code = "500"

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = str(message.get("status", 500))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.perf_counter() - start_time

            REQUESTS_TOTAL.labels(method=method, path=path, status=status_code).inc()
            REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(duration)
            REQUESTS_IN_PROGRESS.labels(method=method).dec()


def generate_metrics() -> str:
    """Generate Prometheus exposition format text."""
    return generate_latest(REGISTRY).decode("utf-8")
