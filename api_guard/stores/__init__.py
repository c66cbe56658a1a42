"""
Stores Package.

Ordered-set storage backing the sliding-window rate limiter.
"""

from api_guard.stores.rate_limit_store import (
    InMemoryRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
)

__all__ = [
    "RateLimitStore",
    "RedisRateLimitStore",
    "InMemoryRateLimitStore",
]
