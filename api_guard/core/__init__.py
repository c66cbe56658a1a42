"""
Core module for API Guard.

This module contains configuration and the exception hierarchy.
"""

from api_guard.core.config import Settings, get_settings
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

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "ErrorCode",
    "ApiGuardException",
    "RateLimitStoreError",
    "AuditSinkError",
    "IdentityServiceError",
    "AuthenticationError",
    "ResponseAlreadySentError",
    "ContinuationError",
    "PipelineConfigurationError",
]
