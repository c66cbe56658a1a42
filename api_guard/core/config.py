"""
Core configuration module for API Guard.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the API_GUARD_ prefix.

Only service wiring and credentials live here. Stage behaviour (window size,
request quota, excluded paths, sensitive fields) is configured through the
option dataclasses of each middleware stage.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All fields use the API_GUARD_ prefix for environment variables.
    Example: API_GUARD_REDIS_URL=rediss://default@eu1-example.upstash.io:6379
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="api-guard",
        description="Name of the service for logging and identification",
    )
    version: str = Field(
        default="1.0.0",
        description="Version reported by the health endpoint",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    cors_origins: str = Field(
        default="",
        description="Comma-separated allowed origins outside development",
    )

    # =========================================================================
    # Rate-Limit Store (Redis sorted sets)
    # An empty URL selects the in-process store.
    # =========================================================================
    redis_url: str = Field(
        default="",
        description="Redis connection URL for the rate-limit store",
    )
    redis_token: SecretStr = Field(
        default=SecretStr(""),
        description="Redis auth token (sent as the connection password)",
    )

    # =========================================================================
    # Identity Service and Audit Sink (Supabase)
    # Pattern: SecretStr masks values in logs/repr
    # =========================================================================
    supabase_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the Supabase project",
    )
    supabase_anon_key: SecretStr = Field(
        default=SecretStr(""),
        description="Public API key used for identity lookups",
    )
    supabase_service_role_key: SecretStr = Field(
        default=SecretStr(""),
        description="Service key used to insert audit entries",
    )
    audit_table: str = Field(
        default="audit_logs",
        description="Table receiving audit entries",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        ge=0.5,
        le=120.0,
        description="Timeout for identity and audit sink calls",
    )

    model_config = {
        "env_prefix": "API_GUARD_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Field Validators
    # =========================================================================
    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format (empty means in-memory store)."""
        if v and not v.startswith(("redis://", "rediss://")):
            raise ValueError("Redis URL must start with redis:// or rediss://")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def get_cors_origins(self) -> list[str]:
        """
        Get CORS allowed origins based on environment.

        - Development: Allow all origins (["*"])
        - Staging/Production: Use API_GUARD_CORS_ORIGINS (comma-separated)
        - Not configured outside development: empty list
        """
        if self.environment == "development":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses functools.lru_cache to ensure only one Settings instance is created.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()
