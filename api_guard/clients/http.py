"""
HTTP Client Factory.

Builds httpx.AsyncClient instances for the hosted identity and database
service with pooled connections, uniform timeouts and connection-level
transport retries.

Pattern: Factory pattern for creating configured HTTP clients
"""

from typing import Optional

import httpx


DEFAULT_TIMEOUT_SECONDS: float = 10.0
"""Default timeout for identity and audit-sink calls in seconds."""

DEFAULT_MAX_CONNECTIONS: int = 100
DEFAULT_MAX_KEEPALIVE: int = 20

DEFAULT_RETRY_COUNT: int = 2
"""Connection-level retries only; requests are never replayed after a response."""

USER_AGENT = "api-guard/1.0"


def service_headers(api_key: str, bearer: Optional[str] = None) -> dict[str, str]:
    """
    Headers authenticating a call to the hosted service.

    Args:
        api_key: Project API key sent as `apikey`.
        bearer: Token for the Authorization header (defaults to the API key).
    """
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {bearer or api_key}",
    }


def create_http_client(
    base_url: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    max_connections: Optional[int] = None,
    max_keepalive: Optional[int] = None,
    retries: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
) -> httpx.AsyncClient:
    """
    Create a configured HTTP client with connection pooling and timeouts.

    Args:
        base_url: Base URL for all requests (e.g., "https://project.supabase.co")
        timeout_seconds: Request timeout in seconds (default: 10.0)
        max_connections: Maximum connections in pool (default: 100)
        max_keepalive: Maximum keepalive connections (default: 20)
        retries: Connection retries (default: 2)
        headers: Additional headers to include in all requests

    Returns:
        httpx.AsyncClient: Configured async HTTP client

    Example:
        >>> client = create_http_client(
        ...     base_url="http://localhost:54321",
        ...     headers=service_headers("anon-key"),
        ... )
        >>> async with client:
        ...     response = await client.get("/auth/v1/health")
    """
    timeout = timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS
    max_conn = max_connections if max_connections is not None else DEFAULT_MAX_CONNECTIONS
    max_keep = max_keepalive if max_keepalive is not None else DEFAULT_MAX_KEEPALIVE
    retry_count = retries if retries is not None else DEFAULT_RETRY_COUNT

    limits = httpx.Limits(
        max_connections=max_conn,
        max_keepalive_connections=max_keep,
    )

    default_headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
    }
    if headers:
        default_headers.update(headers)

    transport = httpx.AsyncHTTPTransport(retries=retry_count, limits=limits)

    return httpx.AsyncClient(
        base_url=base_url or "",
        timeout=httpx.Timeout(timeout),
        headers=default_headers,
        transport=transport,
    )
