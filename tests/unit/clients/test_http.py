"""
Tests for the HTTP client factory.
"""

import httpx
import pytest

from api_guard.clients.http import (
    DEFAULT_TIMEOUT_SECONDS,
    create_http_client,
    service_headers,
)


class TestCreateHttpClient:

    @pytest.mark.asyncio
    async def test_returns_async_client_with_base_url(self):
        client = create_http_client(base_url="http://supabase.test")
        try:
            assert isinstance(client, httpx.AsyncClient)
            assert str(client.base_url) == "http://supabase.test"
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_default_timeout(self):
        client = create_http_client()
        try:
            assert client.timeout.read == DEFAULT_TIMEOUT_SECONDS
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_custom_timeout_and_headers(self):
        client = create_http_client(timeout_seconds=3.0, headers={"apikey": "k"})
        try:
            assert client.timeout.connect == 3.0
            assert client.headers["apikey"] == "k"
            assert client.headers["accept"] == "application/json"
        finally:
            await client.aclose()


class TestServiceHeaders:

    def test_api_key_is_default_bearer(self):
        assert service_headers("service-key") == {
            "apikey": "service-key",
            "Authorization": "Bearer service-key",
        }

    def test_explicit_bearer(self):
        assert service_headers("anon", bearer="user-jwt")["Authorization"] == "Bearer user-jwt"
