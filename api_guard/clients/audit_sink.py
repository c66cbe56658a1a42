"""
Audit Sink - append-only destination for audit entries.

Implementations:
- SupabaseAuditSink: inserts into a PostgREST table (`POST /rest/v1/<table>`)
- InMemoryAuditSink: keeps entries in a list (tests, local development)

Sinks raise AuditSinkError on failure; the audit recorder logs and swallows
it so auditing never fails a user-facing request.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from api_guard.clients.http import create_http_client, service_headers
from api_guard.core.exceptions import AuditSinkError
from api_guard.models.domain import AuditEntry


logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Append-only audit entry destination."""

    @abstractmethod
    async def insert(self, entry: AuditEntry) -> None:
        """Persist one entry. Raises AuditSinkError on failure."""


class InMemoryAuditSink(AuditSink):
    """Collects entries in memory."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def insert(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def clear(self) -> None:
        self.entries.clear()


class SupabaseAuditSink(AuditSink):
    """
    Audit sink writing to a Supabase table through PostgREST.

    Uses the service-role key so inserts bypass row-level security.

    Example:
        >>> sink = SupabaseAuditSink(
        ...     base_url="http://localhost:54321",
        ...     api_key="service-role-key",
        ...     table="audit_logs",
        ... )
        >>> await sink.insert(entry)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: str = "",
        table: str = "audit_logs",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._table = table
        if http_client is not None:
            self._client = http_client
            self._owns_client = False
        else:
            self._client = create_http_client(
                base_url=base_url or "http://localhost:54321",
                timeout_seconds=timeout_seconds,
                headers=service_headers(api_key),
            )
            self._owns_client = True

    @property
    def table(self) -> str:
        return self._table

    async def close(self) -> None:
        """Close the HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SupabaseAuditSink":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def insert(self, entry: AuditEntry) -> None:
        try:
            response = await self._client.post(
                f"/rest/v1/{self._table}",
                json=[entry.to_record()],
                headers={"Prefer": "return=minimal"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AuditSinkError(
                f"Audit insert rejected: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise AuditSinkError(f"Audit sink unavailable: {e}") from e
