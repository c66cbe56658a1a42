"""
Identity Service Client.

Resolves bearer tokens to users through the hosted auth service
(`GET /auth/v1/user`). The auth gate depends only on the IdentityProvider
interface, so tests substitute an AsyncMock or a fake provider.

Outcomes:
- a user object: the token is valid
- None: the service explicitly rejected the token
- IdentityServiceError: the service is unreachable or failed

Pattern: Client adapter for an external service
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from api_guard.clients.http import create_http_client, service_headers
from api_guard.core.exceptions import IdentityServiceError
from api_guard.models.domain import AuthUser


logger = logging.getLogger(__name__)

# Statuses the auth service uses to reject a token
REJECTION_STATUSES = frozenset({400, 401, 403, 404})


class IdentityProvider(ABC):
    """Exchanges bearer tokens for identities."""

    @abstractmethod
    async def get_user(self, token: str) -> Optional[AuthUser]:
        """
        Resolve `token` to a user.

        Returns:
            The user, or None when the token is rejected.

        Raises:
            IdentityServiceError: If the service cannot answer.
        """


class SupabaseIdentityClient(IdentityProvider):
    """
    Identity provider backed by Supabase Auth.

    Example:
        >>> client = SupabaseIdentityClient(
        ...     base_url="http://localhost:54321", api_key="anon-key"
        ... )
        >>> user = await client.get_user(token)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._api_key = api_key
        if http_client is not None:
            self._client = http_client
            self._owns_client = False
        else:
            self._client = create_http_client(
                base_url=base_url or "http://localhost:54321",
                timeout_seconds=timeout_seconds,
                headers={"apikey": api_key},
            )
            self._owns_client = True

    async def close(self) -> None:
        """Close the HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SupabaseIdentityClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def get_user(self, token: str) -> Optional[AuthUser]:
        try:
            response = await self._client.get(
                "/auth/v1/user",
                headers=service_headers(self._api_key, bearer=token),
            )
        except httpx.ConnectError as e:
            raise IdentityServiceError(f"Identity service unavailable: {e}") from e
        except httpx.TimeoutException as e:
            raise IdentityServiceError(f"Identity service request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise IdentityServiceError(f"Identity service request failed: {e}") from e

        if response.status_code in REJECTION_STATUSES:
            logger.debug(f"Identity service rejected token with status {response.status_code}")
            return None

        if response.status_code != 200:
            raise IdentityServiceError(
                f"Identity service error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            return AuthUser.from_service_payload(payload)
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise IdentityServiceError(
                f"Identity service returned an invalid user: {e}",
                status_code=response.status_code,
            ) from e
