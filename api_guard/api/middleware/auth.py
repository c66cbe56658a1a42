"""
Authentication Gate.

Validates `Authorization: Bearer <token>` against the identity service and
optionally enforces a role claim. Every outcome except success is terminal:

    no header                      -> 401 Unauthorized: Missing authorization header
    malformed header / rejected    -> 401 Unauthorized: Invalid token
    identity service fault         -> 500 Server error during authentication
    accepted, role mismatch        -> 403 Forbidden: <Role> access required
    accepted, role ok              -> request.user is set, chain continues

The gate fails closed: if the identity service cannot answer, the request is
refused rather than let through.

Surfaces:
- AuthGate: `authenticate(request)` plus use as a pipeline stage
- require_auth: stage factory
- with_auth: handler decorator
"""

import logging
from typing import Optional

from api_guard.api.context import ApiRequest, ApiResponse, Continuation, Handler
from api_guard.clients.identity import IdentityProvider
from api_guard.core.exceptions import AuthenticationError, ErrorCode
from api_guard.models.domain import AuthUser
from api_guard.observability.metrics import record_auth_outcome


logger = logging.getLogger(__name__)


MISSING_HEADER_MESSAGE = "Unauthorized: Missing authorization header"
INVALID_TOKEN_MESSAGE = "Unauthorized: Invalid token"
SERVICE_ERROR_MESSAGE = "Server error during authentication"


def forbidden_message(role: str) -> str:
    return f"Forbidden: {role.capitalize()} access required"


def extract_bearer_token(header: str) -> Optional[str]:
    """Return the token of a `Bearer <token>` header, None if malformed."""
    parts = header.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


class AuthGate:
    """
    Bearer-token authentication with optional role enforcement.

    Example:
        >>> gate = AuthGate(identity=SupabaseIdentityClient(...), require_role="admin")
        >>> pipeline = default_pipeline.then(gate.as_stage())
    """

    stage_name = "auth"

    def __init__(
        self,
        identity: IdentityProvider,
        require_role: Optional[str] = None,
    ) -> None:
        self.identity = identity
        self.require_role = require_role

    async def authenticate(self, request: ApiRequest) -> AuthUser:
        """
        Resolve the caller's identity.

        Raises:
            AuthenticationError: With the status and message to answer with.
        """
        header = request.header("authorization")
        if not header:
            raise AuthenticationError(MISSING_HEADER_MESSAGE, outcome="missing")

        token = extract_bearer_token(header)
        if token is None:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE, outcome="invalid")

        try:
            user = await self.identity.get_user(token)
        except Exception as e:
            logger.error(f"Auth middleware error: {type(e).__name__}: {e}")
            raise AuthenticationError(
                SERVICE_ERROR_MESSAGE,
                status_code=500,
                error_code=ErrorCode.IDENTITY_SERVICE_ERROR,
                outcome="error",
            ) from e

        if user is None:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE, outcome="invalid")

        if self.require_role is not None and user.role != self.require_role:
            raise AuthenticationError(
                forbidden_message(self.require_role),
                status_code=403,
                error_code=ErrorCode.FORBIDDEN,
                outcome="forbidden",
            )

        return user

    async def __call__(
        self,
        request: ApiRequest,
        response: ApiResponse,
        call_next: Continuation,
    ) -> None:
        try:
            user = await self.authenticate(request)
        except AuthenticationError as e:
            record_auth_outcome(e.outcome)
            await response.status(e.status_code).json({"error": e.message})
            return

        request.user = user
        record_auth_outcome("accepted")
        await call_next()

    def as_stage(self) -> "AuthGate":
        """The gate itself is a pipeline stage."""
        return self


def require_auth(
    identity: IdentityProvider,
    require_role: Optional[str] = None,
) -> AuthGate:
    """Build an authentication stage."""
    return AuthGate(identity=identity, require_role=require_role)


def with_auth(
    handler: Handler,
    identity: IdentityProvider,
    require_role: Optional[str] = None,
) -> Handler:
    """
    Decorate a handler so it only runs for authenticated callers.

    Handler exceptions propagate unchanged.
    """
    gate = AuthGate(identity=identity, require_role=require_role)

    async def authenticated_handler(request: ApiRequest, response: ApiResponse) -> None:
        async def call_handler() -> None:
            await handler(request, response)

        await gate(request, response, call_handler)

    authenticated_handler.__name__ = getattr(handler, "__name__", "authenticated_handler")
    return authenticated_handler
