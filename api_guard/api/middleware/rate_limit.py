"""
Rate Limiting Stage - sliding window over an ordered-set store.

Each counted request becomes one event in a sorted set keyed by the rate
window key and scored by the request time in epoch milliseconds. A check
counts the events inside [now - window, now]; events older than the window
are never counted and are trimmed lazily whenever a request is admitted.

Concurrency: count and insert are separate store round trips, so two requests
for the same key can both observe the same count before either writes. The
limiter is approximate under concurrency and suitable for abuse mitigation,
not for billing-grade quotas.

Failure policy: when the store is unreachable the stage logs the error and
fails open, delegating without counting and without rate-limit headers.

Pattern: Strategy pattern - the store backend is injected
Pattern: Stage object - RateLimiter instances are pipeline stages
"""

import logging
import math
import secrets
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from api_guard.api.context import ApiRequest, ApiResponse, Continuation
from api_guard.core.exceptions import ErrorCode, RateLimitStoreError
from api_guard.observability.metrics import record_rate_limit_decision
from api_guard.stores.rate_limit_store import RateLimitStore


logger = logging.getLogger(__name__)


# =============================================================================
# Rate Limit Result
# =============================================================================


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed: Whether the request is admitted.
        limit: Maximum requests per window.
        remaining: Requests left in the current window after this one.
        reset_at: Epoch seconds at which the current window ends.
        retry_after: Seconds to wait before retrying (denied requests only).
        key: Rate window key that was checked.
        member: Event recorded for an admitted request.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: Optional[int] = None
    key: Optional[str] = None
    member: Optional[str] = None


KeyGenerator = Callable[[ApiRequest], str]
ExceededHandler = Callable[[ApiRequest, ApiResponse, RateLimitResult], Awaitable[None]]


def default_key_generator(request: ApiRequest) -> str:
    """Key requests by client network address."""
    return f"rate-limit:{request.client_address}"


async def default_exceeded_handler(
    request: ApiRequest,
    response: ApiResponse,
    result: RateLimitResult,
) -> None:
    """Answer 429 with the structured error body and rate-limit headers."""
    response.set_header("X-RateLimit-Limit", result.limit)
    response.set_header("X-RateLimit-Remaining", 0)
    response.set_header("X-RateLimit-Reset", result.reset_at)
    if result.retry_after is not None:
        response.set_header("Retry-After", result.retry_after)
    await response.status(429).json(
        {
            "error": {
                "message": "Too many requests",
                "code": ErrorCode.RATE_LIMIT_EXCEEDED.value,
            }
        }
    )


# =============================================================================
# Options
# =============================================================================


@dataclass(frozen=True)
class RateLimitOptions:
    """
    Rate limiting configuration.

    Attributes:
        window_ms: Sliding window length in milliseconds (default 15 minutes).
        max_requests: Requests admitted per key per window.
        key_generator: Derives the rate window key from a request.
        handler: Writes the response for a denied request.
        skip_failed_requests: Un-count requests that finish with status >= 400.
        skip_successful_requests: Un-count requests that finish with 2xx.
        exclude_paths: Path prefixes that bypass the limiter entirely.
        exclude_methods: HTTP methods that bypass the limiter entirely.
    """

    window_ms: int = 15 * 60 * 1000
    max_requests: int = 100
    key_generator: KeyGenerator = default_key_generator
    handler: ExceededHandler = default_exceeded_handler
    skip_failed_requests: bool = False
    skip_successful_requests: bool = False
    exclude_paths: tuple[str, ...] = ("/api/health", "/api/metrics")
    exclude_methods: tuple[str, ...] = ("OPTIONS",)

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if self.max_requests < 0:
            raise ValueError("max_requests must not be negative")


# =============================================================================
# Rate Limiter
# =============================================================================


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimiter:
    """
    Sliding-window rate limiter and pipeline stage.

    Calling the instance runs it as a stage: excluded requests delegate
    untouched, denied requests are answered by the exceeded handler, admitted
    requests get X-RateLimit-* headers and delegate.

    Example:
        >>> limiter = RateLimiter(store=InMemoryRateLimitStore())
        >>> result = await limiter.check(request)
        >>> result.remaining
        99
    """

    store: RateLimitStore
    options: RateLimitOptions = field(default_factory=RateLimitOptions)
    clock: Callable[[], int] = _epoch_ms

    stage_name = "rate_limit"

    def is_excluded(self, request: ApiRequest) -> bool:
        if request.method in self.options.exclude_methods:
            return True
        return any(request.path.startswith(p) for p in self.options.exclude_paths)

    async def check(self, request: ApiRequest) -> RateLimitResult:
        """
        Count the request against its window.

        Admitted requests are recorded in the store; denied requests are not.

        Raises:
            RateLimitStoreError: If the store cannot be read or written.
        """
        opts = self.options
        key = opts.key_generator(request)
        now = self.clock()
        window_start = now - opts.window_ms
        reset_at = math.ceil((now + opts.window_ms) / 1000)

        count = await self.store.count(key, window_start, now)

        if count >= opts.max_requests:
            return RateLimitResult(
                allowed=False,
                limit=opts.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=math.ceil(opts.window_ms / 1000),
                key=key,
            )

        # Unique suffix keeps same-millisecond requests as distinct events
        member = f"{now}:{secrets.token_hex(6)}"
        await self.store.add(key, member, now)
        await self.store.trim(key, window_start)
        await self.store.expire(key, math.ceil(opts.window_ms / 1000))

        return RateLimitResult(
            allowed=True,
            limit=opts.max_requests,
            remaining=max(0, opts.max_requests - count - 1),
            reset_at=reset_at,
            key=key,
            member=member,
        )

    async def release(self, result: RateLimitResult) -> None:
        """Remove the event recorded for an admitted request."""
        if result.key is None or result.member is None:
            return
        await self.store.remove(result.key, result.member)

    async def __call__(
        self,
        request: ApiRequest,
        response: ApiResponse,
        call_next: Continuation,
    ) -> None:
        if self.is_excluded(request):
            await call_next()
            return

        try:
            result = await self.check(request)
        except RateLimitStoreError as e:
            logger.error(f"Rate limit store unavailable, failing open: {e.message}")
            record_rate_limit_decision("fail_open")
            await call_next()
            return

        if not result.allowed:
            logger.info(f"Rate limit exceeded for {result.key}")
            record_rate_limit_decision("denied")
            await self.options.handler(request, response, result)
            return

        record_rate_limit_decision("allowed")
        response.set_header("X-RateLimit-Limit", result.limit)
        response.set_header("X-RateLimit-Remaining", result.remaining)
        response.set_header("X-RateLimit-Reset", result.reset_at)

        if self.options.skip_failed_requests or self.options.skip_successful_requests:
            response.on_complete(self._uncount_on_completion(result))

        try:
            await call_next()
        except Exception:
            # A raise without a response ends as a 500
            if self.options.skip_failed_requests and not response.finished:
                await self._release_quietly(result)
            raise

    def _uncount_on_completion(
        self, result: RateLimitResult
    ) -> Callable[[ApiResponse], Awaitable[None]]:
        async def uncount(response: ApiResponse) -> None:
            status = response.status_code
            succeeded = 200 <= status < 300
            failed = status >= 400
            if (succeeded and self.options.skip_successful_requests) or (
                failed and self.options.skip_failed_requests
            ):
                await self._release_quietly(result)

        return uncount

    async def _release_quietly(self, result: RateLimitResult) -> None:
        try:
            await self.release(result)
        except RateLimitStoreError as e:
            logger.warning(f"Failed to un-count request for {result.key}: {e.message}")


def rate_limit(
    options: Optional[RateLimitOptions] = None,
    *,
    store: RateLimitStore,
    clock: Optional[Callable[[], int]] = None,
) -> RateLimiter:
    """Build a rate limiting stage over `store`."""
    return RateLimiter(
        store=store,
        options=options or RateLimitOptions(),
        clock=clock or _epoch_ms,
    )
