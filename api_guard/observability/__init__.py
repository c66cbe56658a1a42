"""
Observability Package.

This package provides:
- Structured JSON logging with correlation IDs
- Prometheus metrics for HTTP traffic and pipeline decisions
"""

from api_guard.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)

from api_guard.observability.metrics import (
    MetricsMiddleware,
    generate_metrics,
    normalize_path,
    record_audit_write,
    record_auth_outcome,
    record_rate_limit_decision,
    record_stage_error,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Metrics
    "MetricsMiddleware",
    "generate_metrics",
    "normalize_path",
    "record_rate_limit_decision",
    "record_auth_outcome",
    "record_audit_write",
    "record_stage_error",
]
