"""
API Guard - Application Entry Point

FastAPI application factory wiring settings, the rate-limit store, the audit
sink and the identity client into the security pipeline.

Collaborators passed to create_app are used as-is and left open on shutdown;
collaborators built from settings are owned by the app and closed by the
lifespan handler.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api_guard.api.middleware.composer import create_default_registry
from api_guard.api.routes.health import router as health_router
from api_guard.api.routes.users import build_users_router
from api_guard.clients.audit_sink import AuditSink, SupabaseAuditSink
from api_guard.clients.identity import IdentityProvider, SupabaseIdentityClient
from api_guard.core.config import Settings, get_settings
from api_guard.observability.logging import configure_logging, get_logger
from api_guard.observability.metrics import MetricsMiddleware
from api_guard.stores.rate_limit_store import (
    InMemoryRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
)


APP_NAME = "API Guard"
APP_DESCRIPTION = "Rate limiting, audit logging and authentication for user-management APIs"


def build_rate_limit_store(settings: Settings) -> RateLimitStore:
    """Redis store when a URL is configured, in-memory otherwise."""
    if settings.redis_url:
        return RedisRateLimitStore.from_url(
            settings.redis_url,
            token=settings.redis_token.get_secret_value() or None,
        )
    return InMemoryRateLimitStore()


def build_audit_sink(settings: Settings) -> SupabaseAuditSink:
    return SupabaseAuditSink(
        base_url=settings.supabase_url,
        api_key=settings.supabase_service_role_key.get_secret_value(),
        table=settings.audit_table,
        timeout_seconds=settings.http_timeout_seconds,
    )


def build_identity_client(settings: Settings) -> SupabaseIdentityClient:
    return SupabaseIdentityClient(
        base_url=settings.supabase_url,
        api_key=settings.supabase_anon_key.get_secret_value(),
        timeout_seconds=settings.http_timeout_seconds,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    rate_limit_store: Optional[RateLimitStore] = None,
    audit_sink: Optional[AuditSink] = None,
    identity: Optional[IdentityProvider] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings (default: get_settings()).
        rate_limit_store: Store for the rate limiter (default: from settings).
        audit_sink: Destination for audit entries (default: from settings).
        identity: Identity provider for the auth gate (default: from settings).

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    configure_logging(level=settings.log_level)
    logger = get_logger(__name__)

    owned: list[Any] = []
    if rate_limit_store is None:
        rate_limit_store = build_rate_limit_store(settings)
        owned.append(rate_limit_store)
    if audit_sink is None:
        audit_sink = build_audit_sink(settings)
        owned.append(audit_sink)
    if identity is None:
        identity = build_identity_client(settings)
        owned.append(identity)

    registry = create_default_registry(store=rate_limit_store, sink=audit_sink)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "application_starting",
            service=settings.service_name,
            version=settings.version,
            environment=settings.environment,
            pipeline=list(registry.default_pipeline().names),
        )
        app.state.initialized = True

        yield

        logger.info("application_stopping", service=settings.service_name)
        for resource in owned:
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        app.state.initialized = False

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=settings.version,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.rate_limit_store = rate_limit_store
    app.state.audit_sink = audit_sink
    app.state.identity = identity
    app.state.registry = registry

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(build_users_router(registry, identity))

    return app
