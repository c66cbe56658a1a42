"""
Pytest configuration and shared fixtures.

Fixtures follow the FakeRepository pattern: in-memory fakes for the
rate-limit store and the audit sink, fakeredis for the Redis store, and
AsyncMock-backed identity providers.
"""

import sys
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import AsyncMock

import fakeredis.aioredis
import pytest

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from api_guard.api.context import ApiRequest, ApiResponse  # noqa: E402
from api_guard.clients.audit_sink import InMemoryAuditSink  # noqa: E402
from api_guard.clients.identity import IdentityProvider  # noqa: E402
from api_guard.core.config import Settings  # noqa: E402
from api_guard.models.domain import AuthUser  # noqa: E402
from api_guard.stores.rate_limit_store import InMemoryRateLimitStore  # noqa: E402


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Tests wiring several components")


# =============================================================================
# Stores and Sinks
# =============================================================================


@pytest.fixture
def fake_redis():
    """Fake Redis client with decode_responses=True."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def memory_store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


# =============================================================================
# Identity
# =============================================================================


@pytest.fixture
def regular_user() -> AuthUser:
    return AuthUser(
        id="user-1",
        email="user@example.com",
        role="user",
        app_metadata={"role": "user"},
    )


@pytest.fixture
def admin_user() -> AuthUser:
    return AuthUser(
        id="admin-1",
        email="admin@example.com",
        role="admin",
        app_metadata={"role": "admin"},
    )


@pytest.fixture
def identity_for() -> Callable[..., AsyncMock]:
    """
    Build an identity provider mock.

    identity_for(user) resolves every token to `user` (None = rejected);
    identity_for(error=exc) raises `exc` from get_user.
    """

    def factory(user: Optional[AuthUser] = None, error: Optional[Exception] = None) -> AsyncMock:
        identity = AsyncMock(spec=IdentityProvider)
        if error is not None:
            identity.get_user.side_effect = error
        else:
            identity.get_user.return_value = user
        return identity

    return factory


# =============================================================================
# Requests and Settings
# =============================================================================


@pytest.fixture
def make_request() -> Callable[..., ApiRequest]:
    """Factory for ApiRequest objects with sensible defaults."""

    def factory(
        method: str = "GET",
        path: str = "/api/users",
        headers: Optional[dict] = None,
        body=None,
        query_params: Optional[dict] = None,
        client_host: str = "203.0.113.7",
    ) -> ApiRequest:
        return ApiRequest(
            method=method,
            path=path,
            headers=headers or {},
            query_params=query_params or {},
            body=body,
            client_host=client_host,
        )

    return factory


@pytest.fixture
def response() -> ApiResponse:
    return ApiResponse()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with safe defaults and no external services."""
    return Settings(
        service_name="api-guard-test",
        environment="development",
        redis_url="",
        supabase_url="http://supabase.test",
        supabase_anon_key="test-anon-key",
        supabase_service_role_key="test-service-key",
    )
