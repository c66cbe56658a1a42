"""
Security Headers Stage.

Sets the standard browser hardening headers on every response before
delegating. Each header can be disabled or overridden through
SecurityHeadersOptions; Content-Security-Policy accepts either a literal
policy string or directive overrides merged over the default directive set.

A failure while setting headers is logged and the request still proceeds.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

from api_guard.api.context import ApiRequest, ApiResponse, Continuation
from api_guard.observability.metrics import record_stage_error


logger = logging.getLogger(__name__)


DEFAULT_CSP_DIRECTIVES: dict[str, tuple[str, ...]] = {
    "default-src": ("'self'",),
    "base-uri": ("'self'",),
    "font-src": ("'self'", "https:", "data:"),
    "form-action": ("'self'",),
    "frame-ancestors": ("'self'",),
    "img-src": ("'self'", "data:", "https:"),
    "object-src": ("'none'",),
    "script-src": ("'self'", "'unsafe-inline'", "'unsafe-eval'"),
    "script-src-attr": ("'none'",),
    "style-src": ("'self'", "'unsafe-inline'"),
    "upgrade-insecure-requests": (),
}


@dataclass(frozen=True)
class StrictTransportSecurity:
    enabled: bool = True
    max_age: int = 31536000
    include_subdomains: bool = True
    preload: bool = True

    def render(self) -> str:
        value = f"max-age={self.max_age}"
        if self.include_subdomains:
            value += "; includeSubDomains"
        if self.preload:
            value += "; preload"
        return value


@dataclass(frozen=True)
class ExpectCT:
    enabled: bool = True
    max_age: int = 86400
    enforce: bool = True
    report_uri: Optional[str] = None

    def render(self) -> str:
        value = f"max-age={self.max_age}"
        if self.enforce:
            value += ", enforce"
        if self.report_uri:
            value += f', report-uri="{self.report_uri}"'
        return value


CSPSetting = Union[bool, str, Mapping[str, Sequence[str]]]


@dataclass(frozen=True)
class SecurityHeadersOptions:
    """
    Security header configuration.

    String-valued options set the header to that value; None disables it.

    Attributes:
        content_security_policy: True for the default directives, False to
            disable, a string for a literal policy, or a mapping of directive
            overrides merged over DEFAULT_CSP_DIRECTIVES.
    """

    content_security_policy: CSPSetting = True
    x_frame_options: Optional[str] = "SAMEORIGIN"
    x_content_type_options: bool = True
    referrer_policy: Optional[str] = "strict-origin-when-cross-origin"
    strict_transport_security: StrictTransportSecurity = field(
        default_factory=StrictTransportSecurity
    )
    x_xss_protection: Optional[str] = "1; mode=block"
    x_permitted_cross_domain_policies: Optional[str] = "none"
    x_dns_prefetch_control: bool = True
    expect_ct: ExpectCT = field(default_factory=ExpectCT)


def build_csp(setting: CSPSetting) -> Optional[str]:
    """Render a Content-Security-Policy value, None when disabled."""
    if setting is False:
        return None
    if isinstance(setting, str):
        return setting

    directives = dict(DEFAULT_CSP_DIRECTIVES)
    if isinstance(setting, Mapping):
        directives.update({k: tuple(v) for k, v in setting.items()})

    return "; ".join(
        " ".join([name, *values]) for name, values in directives.items()
    )


def build_security_headers(options: SecurityHeadersOptions) -> dict[str, str]:
    """Compute the header map for `options`, in emission order."""
    headers: dict[str, str] = {}

    if options.x_dns_prefetch_control:
        headers["X-DNS-Prefetch-Control"] = "on"
    if options.strict_transport_security.enabled:
        headers["Strict-Transport-Security"] = options.strict_transport_security.render()
    if options.x_frame_options:
        headers["X-Frame-Options"] = options.x_frame_options
    if options.x_content_type_options:
        headers["X-Content-Type-Options"] = "nosniff"
    if options.x_xss_protection:
        headers["X-XSS-Protection"] = options.x_xss_protection
    if options.referrer_policy:
        headers["Referrer-Policy"] = options.referrer_policy

    csp = build_csp(options.content_security_policy)
    if csp:
        headers["Content-Security-Policy"] = csp

    if options.x_permitted_cross_domain_policies:
        headers["X-Permitted-Cross-Domain-Policies"] = options.x_permitted_cross_domain_policies
    if options.expect_ct.enabled:
        headers["Expect-CT"] = options.expect_ct.render()

    return headers


def security_headers(options: Optional[SecurityHeadersOptions] = None):
    """Build a stage that sets the configured security headers."""
    opts = options or SecurityHeadersOptions()

    async def security_headers_stage(
        request: ApiRequest,
        response: ApiResponse,
        call_next: Continuation,
    ) -> None:
        try:
            for name, value in build_security_headers(opts).items():
                response.set_header(name, value)
        except Exception as e:
            logger.error(f"Security headers stage failed: {type(e).__name__}: {e}")
            record_stage_error("security_headers")
        await call_next()

    security_headers_stage.stage_name = "security_headers"
    return security_headers_stage
