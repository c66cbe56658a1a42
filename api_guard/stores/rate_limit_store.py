"""
Rate-Limit Store - ordered-set storage for sliding-window counters.

The rate limiter records one event per counted request in a sorted set keyed
by the rate window key, scored by the request time in epoch milliseconds.
This module hides the storage behind a small interface so the limiter can be
given a Redis-backed store in production and an in-process store in tests or
single-instance deployments.

Pattern: Strategy pattern - interchangeable store backends
Pattern: Dependency injection for the Redis client (no module-level client)

Consistency: the store offers no compare-and-set. Two concurrent checks for
the same key may both read the same count before either writes, so the
limiter is approximate under concurrency.
"""

import asyncio
import bisect
import math
import time
from abc import ABC, abstractmethod
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from api_guard.core.exceptions import RateLimitStoreError


# =============================================================================
# Store Interface
# =============================================================================


class RateLimitStore(ABC):
    """
    Abstract ordered-set store used by the rate limiter.

    Implementations:
    - RedisRateLimitStore: distributed deployments (sorted sets)
    - InMemoryRateLimitStore: single-instance deployments and tests

    All methods raise RateLimitStoreError when the backend is unreachable.
    """

    @abstractmethod
    async def count(self, key: str, min_score: float, max_score: float) -> int:
        """Count members of `key` with min_score <= score <= max_score."""

    @abstractmethod
    async def add(self, key: str, member: str, score: float) -> None:
        """Add `member` to `key` with `score`."""

    @abstractmethod
    async def remove(self, key: str, member: str) -> None:
        """Remove `member` from `key` if present."""

    @abstractmethod
    async def trim(self, key: str, max_score: float) -> None:
        """Remove members of `key` with score strictly below `max_score`."""

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> None:
        """Expire `key` after `seconds` without writes."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend is reachable."""


# =============================================================================
# Redis Store
# =============================================================================


class RedisRateLimitStore(RateLimitStore):
    """
    Redis sorted-set store.

    Commands used: ZCOUNT, ZADD, ZREM, ZREMRANGEBYSCORE, EXPIRE, PING.

    Example:
        >>> import redis.asyncio as redis
        >>> client = redis.from_url("redis://localhost:6379", decode_responses=True)
        >>> store = RedisRateLimitStore(redis_client=client)
    """

    def __init__(self, redis_client: Redis) -> None:
        self._redis: Redis = redis_client

    @classmethod
    def from_url(cls, url: str, token: Optional[str] = None) -> "RedisRateLimitStore":
        """
        Build a store from a connection URL and optional auth token.

        The token is sent as the connection password, which is how hosted
        Redis providers authenticate REST tokens over the Redis protocol.
        """
        client = Redis.from_url(
            url,
            password=token or None,
            encoding="utf-8",
            decode_responses=True,
        )
        return cls(redis_client=client)

    async def close(self) -> None:
        await self._redis.aclose()

    async def count(self, key: str, min_score: float, max_score: float) -> int:
        try:
            return int(await self._redis.zcount(key, min_score, max_score))
        except RedisError as e:
            raise RateLimitStoreError(f"Failed to count events for {key}: {e}", key=key) from e

    async def add(self, key: str, member: str, score: float) -> None:
        try:
            await self._redis.zadd(key, {member: score})
        except RedisError as e:
            raise RateLimitStoreError(f"Failed to record event for {key}: {e}", key=key) from e

    async def remove(self, key: str, member: str) -> None:
        try:
            await self._redis.zrem(key, member)
        except RedisError as e:
            raise RateLimitStoreError(f"Failed to remove event for {key}: {e}", key=key) from e

    async def trim(self, key: str, max_score: float) -> None:
        try:
            # "(" makes the upper bound exclusive
            await self._redis.zremrangebyscore(key, "-inf", f"({max_score}")
        except RedisError as e:
            raise RateLimitStoreError(f"Failed to trim events for {key}: {e}", key=key) from e

    async def expire(self, key: str, seconds: int) -> None:
        try:
            await self._redis.expire(key, seconds)
        except RedisError as e:
            raise RateLimitStoreError(f"Failed to set expiry for {key}: {e}", key=key) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False


# =============================================================================
# In-Memory Store
# =============================================================================


class InMemoryRateLimitStore(RateLimitStore):
    """
    In-process sorted-set store.

    Suitable for single-instance deployments and tests. Each key holds a list
    of (score, member) pairs kept sorted by score, plus an optional expiry
    deadline. Reads never create keys, a key whose set becomes empty is
    dropped, and every write sweeps keys past their deadline.
    """

    def __init__(self) -> None:
        self._sets: dict[str, list[tuple[float, str]]] = {}
        self._deadlines: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def keys(self) -> list[str]:
        """Keys currently held in memory, including expired keys not yet swept."""
        return list(self._sets)

    def _sweep(self) -> None:
        now = time.monotonic()
        for key in [k for k, deadline in self._deadlines.items() if now >= deadline]:
            self._sets.pop(key, None)
            self._deadlines.pop(key, None)

    def _live(self, key: str) -> list[tuple[float, str]]:
        deadline = self._deadlines.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            return []
        return self._sets.get(key, [])

    def _replace(self, key: str, entries: list[tuple[float, str]]) -> None:
        if entries:
            self._sets[key] = entries
        else:
            self._sets.pop(key, None)
            self._deadlines.pop(key, None)

    async def count(self, key: str, min_score: float, max_score: float) -> int:
        async with self._lock:
            scores = [score for score, _ in self._live(key)]
            return bisect.bisect_right(scores, max_score) - bisect.bisect_left(scores, min_score)

    async def add(self, key: str, member: str, score: float) -> None:
        async with self._lock:
            self._sweep()
            entries = [e for e in self._live(key) if e[1] != member]
            bisect.insort(entries, (score, member))
            self._sets[key] = entries

    async def remove(self, key: str, member: str) -> None:
        async with self._lock:
            self._sweep()
            self._replace(key, [e for e in self._live(key) if e[1] != member])

    async def trim(self, key: str, max_score: float) -> None:
        async with self._lock:
            self._sweep()
            self._replace(key, [e for e in self._live(key) if e[0] >= max_score])

    async def expire(self, key: str, seconds: int) -> None:
        async with self._lock:
            self._sweep()
            if key in self._sets:
                self._deadlines[key] = time.monotonic() + max(seconds, 0)

    async def ping(self) -> bool:
        return True

    def ttl(self, key: str) -> Optional[int]:
        """Remaining seconds before `key` expires, None without expiry."""
        deadline = self._deadlines.get(key)
        now = time.monotonic()
        if deadline is None or now >= deadline:
            return None
        return math.ceil(deadline - now)
