"""
Health Router - liveness, readiness and metrics endpoints.

These routes are served outside the security pipeline and are on the default
exclusion lists of the rate limiter and the audit recorder.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

from api_guard.observability.metrics import generate_metrics
from api_guard.stores.rate_limit_store import RateLimitStore


logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    status: str
    checks: dict[str, bool]


# =============================================================================
# Health Service
# =============================================================================


class HealthService:
    """
    Dependency checks for readiness.

    The rate-limit store is the only hard dependency: the identity service
    and the audit sink are called per request and degrade independently.
    """

    def __init__(self, store: RateLimitStore, version: str = "1.0.0") -> None:
        self._store = store
        self.version = version

    async def check_store(self) -> bool:
        try:
            return await self._store.ping()
        except Exception as e:
            logger.warning(f"Rate limit store health check failed: {e}")
            return False


def get_health_service(request: Request) -> HealthService:
    """Dependency injection factory for HealthService."""
    return HealthService(
        store=request.app.state.rate_limit_store,
        version=request.app.state.settings.version,
    )


# =============================================================================
# Router
# =============================================================================

router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(status="healthy", version=request.app.state.settings.version)


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(
    response: Response,
    health_service: HealthService = Depends(get_health_service),
) -> ReadinessResponse:
    """
    Readiness probe.

    Returns 503 when the rate-limit store is unreachable. The limiter itself
    fails open, so this only signals degraded quota enforcement.
    """
    checks = {"rate_limit_store": await health_service.check_store()}
    all_healthy = all(checks.values())

    if not all_healthy:
        response.status_code = 503

    return ReadinessResponse(
        status="ready" if all_healthy else "not_ready",
        checks=checks,
    )


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics() -> PlainTextResponse:
    """Prometheus metrics endpoint."""
    return PlainTextResponse(content=generate_metrics(), media_type=CONTENT_TYPE_LATEST)
