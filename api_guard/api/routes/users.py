"""
User Routes - authenticated endpoints behind the security pipeline.

Routes are built once, at application start, from the stage registry so
every request runs a pre-built pipeline:

    rate_limit -> security_headers -> audit_log -> auth -> handler
"""

from fastapi import APIRouter

from api_guard.api.adapter import endpoint
from api_guard.api.context import ApiRequest, ApiResponse
from api_guard.api.middleware.auth import require_auth
from api_guard.api.middleware.composer import StageRegistry
from api_guard.clients.identity import IdentityProvider


async def get_current_user(request: ApiRequest, response: ApiResponse) -> None:
    """Profile of the authenticated caller."""
    user = request.user
    await response.json(
        {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "user_metadata": user.user_metadata,
        }
    )


def describe_pipeline(registry: StageRegistry):
    async def get_pipeline(request: ApiRequest, response: ApiResponse) -> None:
        """Stages of the default pipeline, for administrators."""
        await response.json(
            {
                "registered": list(registry.names),
                "default": list(registry.default_pipeline().names),
            }
        )

    return get_pipeline


def build_users_router(registry: StageRegistry, identity: IdentityProvider) -> APIRouter:
    """Build the user and admin routes over `registry`."""
    router = APIRouter(prefix="/api", tags=["Users"])

    authenticated = registry.default_pipeline().then(require_auth(identity))
    admin_only = registry.default_pipeline().then(require_auth(identity, require_role="admin"))

    router.add_api_route(
        "/users/me",
        endpoint(get_current_user, authenticated),
        methods=["GET"],
    )
    router.add_api_route(
        "/admin/pipeline",
        endpoint(describe_pipeline(registry), admin_only),
        methods=["GET"],
    )
    return router
