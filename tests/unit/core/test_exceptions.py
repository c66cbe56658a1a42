"""
Unit tests for api_guard/core/exceptions.py.
"""

import pytest

from api_guard.core.exceptions import (
    ApiGuardException,
    AuditSinkError,
    AuthenticationError,
    ContinuationError,
    ErrorCode,
    IdentityServiceError,
    PipelineConfigurationError,
    RateLimitStoreError,
    ResponseAlreadySentError,
)


class TestExceptionHierarchy:

    @pytest.mark.parametrize(
        "exc_class",
        [
            RateLimitStoreError,
            AuditSinkError,
            IdentityServiceError,
            AuthenticationError,
            ContinuationError,
            PipelineConfigurationError,
        ],
    )
    def test_inherits_from_base(self, exc_class):
        assert issubclass(exc_class, ApiGuardException)

    def test_base_carries_message_and_code(self):
        exc = ApiGuardException("boom")

        assert str(exc) == "boom"
        assert exc.message == "boom"
        assert exc.error_code == ErrorCode.API_GUARD_ERROR

    def test_extra_kwargs_become_attributes(self):
        exc = ApiGuardException("boom", detail="extra")
        assert exc.detail == "extra"


class TestSpecificExceptions:

    def test_rate_limit_store_error_keeps_key(self):
        exc = RateLimitStoreError("down", key="rate-limit:1.2.3.4")

        assert exc.key == "rate-limit:1.2.3.4"
        assert exc.error_code == ErrorCode.RATE_LIMIT_STORE_ERROR

    def test_identity_service_error_keeps_status(self):
        exc = IdentityServiceError("bad gateway", status_code=502)
        assert exc.status_code == 502

    def test_authentication_error_defaults_to_401(self):
        exc = AuthenticationError("Unauthorized: Invalid token")

        assert exc.status_code == 401
        assert exc.error_code == ErrorCode.UNAUTHORIZED
        assert exc.outcome == "invalid"

    def test_authentication_error_carries_outcome(self):
        exc = AuthenticationError("Forbidden", status_code=403, outcome="forbidden")

        assert exc.outcome == "forbidden"

    def test_response_already_sent_has_default_message(self):
        assert ResponseAlreadySentError().message == "Response has already been sent"

    def test_continuation_error_names_stage(self):
        assert ContinuationError("twice", stage="audit_log").stage == "audit_log"

    def test_error_codes_are_strings(self):
        assert ErrorCode.RATE_LIMIT_EXCEEDED == "RATE_LIMIT_EXCEEDED"
