"""
Custom exceptions for API Guard.

This module provides the exception hierarchy used by the middleware pipeline.
All exceptions inherit from ApiGuardException and carry an error code so that
logs and API responses classify failures consistently.

Taxonomy:
- Quota exceeded and credential failures are expected and user-facing.
- Store, sink and identity-service failures are infrastructure faults; each
  stage decides whether it fails open, fails closed or swallows them.
- Handler faults are never wrapped here; they propagate unchanged.
"""

from enum import Enum
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(str, Enum):
    """
    Error codes for API Guard exceptions.

    These codes identify error types across the API and in logging.
    """

    API_GUARD_ERROR = "API_GUARD_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    RATE_LIMIT_STORE_ERROR = "RATE_LIMIT_STORE_ERROR"
    AUDIT_SINK_ERROR = "AUDIT_SINK_ERROR"
    IDENTITY_SERVICE_ERROR = "IDENTITY_SERVICE_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RESPONSE_ALREADY_SENT = "RESPONSE_ALREADY_SENT"
    CONTINUATION_ERROR = "CONTINUATION_ERROR"
    PIPELINE_CONFIGURATION_ERROR = "PIPELINE_CONFIGURATION_ERROR"


# =============================================================================
# Base Exception
# =============================================================================


class ApiGuardException(Exception):
    """
    Base exception for all API Guard errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.API_GUARD_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# Infrastructure Faults
# =============================================================================


class RateLimitStoreError(ApiGuardException):
    """
    Raised when the rate-limit store cannot be read or written.

    The rate limiter fails open on this error.

    Attributes:
        key: Rate window key involved in the failed operation (if known).
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        error_code: str = ErrorCode.RATE_LIMIT_STORE_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.key = key


class AuditSinkError(ApiGuardException):
    """
    Raised when an audit entry cannot be persisted.

    The audit recorder logs and swallows this error.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.AUDIT_SINK_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)


class IdentityServiceError(ApiGuardException):
    """
    Raised when the identity service is unreachable or fails.

    An explicit token rejection is NOT an IdentityServiceError; identity
    providers return None for that case. The auth gate fails closed (500).

    Attributes:
        status_code: HTTP status returned by the identity service (if any).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str = ErrorCode.IDENTITY_SERVICE_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.status_code = status_code


# =============================================================================
# Request Outcomes
# =============================================================================


class AuthenticationError(ApiGuardException):
    """
    Terminal outcome of the auth gate.

    Attributes:
        status_code: HTTP status to answer with (401, 403 or 500).
        outcome: Metrics label: missing, invalid, forbidden or error.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 401,
        error_code: str = ErrorCode.UNAUTHORIZED,
        outcome: str = "invalid",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.status_code = status_code
        self.outcome = outcome


# =============================================================================
# Pipeline Contract Violations
# =============================================================================


class ResponseAlreadySentError(ApiGuardException):
    """Raised when a finished response is written to again."""

    def __init__(
        self,
        message: str = "Response has already been sent",
        error_code: str = ErrorCode.RESPONSE_ALREADY_SENT,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)


class ContinuationError(ApiGuardException):
    """Raised when a stage invokes its continuation more than once."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        error_code: str = ErrorCode.CONTINUATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.stage = stage


class PipelineConfigurationError(ApiGuardException):
    """Raised when a pipeline configuration names unknown stages or options."""

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.PIPELINE_CONFIGURATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
