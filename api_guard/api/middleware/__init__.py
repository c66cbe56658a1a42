"""
Middleware Package.

Pipeline stages and the composer that chains them:
- rate_limit: sliding-window quota per client key
- security_headers: browser hardening headers
- audit_log: one redacted audit entry per request
- auth: bearer-token gate with optional role enforcement
- composer: immutable pipelines and the named-stage registry
"""

from api_guard.api.middleware.audit_log import AuditLogOptions, AuditRecorder, audit_log
from api_guard.api.middleware.auth import AuthGate, require_auth, with_auth
from api_guard.api.middleware.composer import (
    Pipeline,
    PipelineConfig,
    StageRegistry,
    combine,
    create_default_registry,
    with_security,
)
from api_guard.api.middleware.rate_limit import (
    RateLimiter,
    RateLimitOptions,
    RateLimitResult,
    rate_limit,
)
from api_guard.api.middleware.redaction import REDACTION_MARKER, sanitize_data
from api_guard.api.middleware.security_headers import (
    SecurityHeadersOptions,
    security_headers,
)

__all__ = [
    "AuditLogOptions",
    "AuditRecorder",
    "audit_log",
    "AuthGate",
    "require_auth",
    "with_auth",
    "Pipeline",
    "PipelineConfig",
    "StageRegistry",
    "combine",
    "create_default_registry",
    "with_security",
    "RateLimiter",
    "RateLimitOptions",
    "RateLimitResult",
    "rate_limit",
    "REDACTION_MARKER",
    "sanitize_data",
    "SecurityHeadersOptions",
    "security_headers",
]
