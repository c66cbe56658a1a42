"""
Domain Models for the request pipeline.

This module contains the value objects exchanged with the external
collaborators of the pipeline:

- AuthUser: the identity resolved from a bearer token by the identity service.
- AuditEntry: the immutable record written once per audited request.

Pattern: Domain models as value objects (frozen Pydantic models)
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# AuthUser Model
# =============================================================================


class AuthUser(BaseModel):
    """
    Identity returned by the identity service for a valid bearer token.

    The role claim is read from `app_metadata.role`, which is where the auth
    service keeps server-assigned roles. The top-level `aud`/`role` fields of
    the service payload ("authenticated") are not authorization roles.

    Attributes:
        id: Stable user identifier.
        email: Primary email address (may be missing for phone sign-ups).
        role: Authorization role claim, None when unassigned.
        app_metadata: Server-controlled metadata.
        user_metadata: User-editable profile metadata.
    """

    id: str = Field(..., description="User identifier")
    email: Optional[str] = Field(default=None, description="Email address")
    role: Optional[str] = Field(default=None, description="Authorization role claim")
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def from_service_payload(cls, payload: dict[str, Any]) -> "AuthUser":
        """Build an AuthUser from an identity-service user object."""
        app_metadata = payload.get("app_metadata") or {}
        return cls(
            id=str(payload["id"]),
            email=payload.get("email"),
            role=app_metadata.get("role"),
            app_metadata=app_metadata,
            user_metadata=payload.get("user_metadata") or {},
        )


# =============================================================================
# AuditEntry Model
# =============================================================================


class AuditEntry(BaseModel):
    """
    Immutable audit record for one request.

    Created exactly once, after the response is finalized, then handed to the
    audit sink. Custom fields from the recorder's extractor are kept as extra
    attributes and serialized with the entry.

    Attributes:
        timestamp: ISO-8601 UTC time the request entered the recorder.
        method: HTTP method.
        path: Request path.
        user_id: Identity reference, None for anonymous requests.
        ip_address: Client network address.
        user_agent: User-Agent header.
        status_code: Final HTTP status.
        response_time: Latency in milliseconds.
        query_params: Sanitized query parameters (optional).
        request_body: Sanitized request body (optional).
        response_body: Sanitized JSON response body (optional).
        headers: Sanitized request headers (optional).
        error: Error message when the handler raised (optional).
    """

    timestamp: str
    method: str
    path: str
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status_code: int
    response_time: int
    query_params: Optional[dict[str, Any]] = None
    request_body: Optional[Any] = None
    response_body: Optional[Any] = None
    headers: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    model_config = {"frozen": True, "extra": "allow"}

    def to_record(self) -> dict[str, Any]:
        """Serialize for the sink, dropping unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)
