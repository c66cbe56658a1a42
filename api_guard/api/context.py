"""
Request/Response Context for the middleware pipeline.

This module defines the framework-neutral objects that flow through every
pipeline stage, and the callable shapes of stages and handlers.

- ApiRequest: the inbound call as seen by stages. Upstream stages may mutate
  it (e.g. the auth gate attaches `user`) and downstream stages see the change.
- ApiResponse: the outbound response under construction. Body-emitting
  operations (`json` for structured bodies, `send` for raw bodies) finalize it
  exactly once; observers register with `on_complete` instead of replacing
  response methods.

The framework adapter (api_guard.api.adapter) constructs one pair per request
and renders the finished ApiResponse.

Pattern: Decorator/observer on the response instead of method patching
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from api_guard.core.exceptions import ResponseAlreadySentError
from api_guard.models.domain import AuthUser


logger = logging.getLogger(__name__)


# =============================================================================
# Callable Shapes
# =============================================================================

Continuation = Callable[[], Awaitable[None]]
"""Delegates to the next stage (or the terminal handler). Call at most once."""

Stage = Callable[["ApiRequest", "ApiResponse", Continuation], Awaitable[None]]
"""A middleware stage: either awaits its continuation or writes a response."""

Handler = Callable[["ApiRequest", "ApiResponse"], Awaitable[None]]
"""A terminal business handler."""

CompletionCallback = Callable[["ApiResponse"], Awaitable[None]]
BackgroundCallable = Callable[[], Awaitable[None]]


# =============================================================================
# ApiRequest
# =============================================================================


@dataclass
class ApiRequest:
    """
    Inbound API call.

    Header names are stored lower-cased so lookups are case-insensitive.

    Attributes:
        method: Upper-cased HTTP method.
        path: URL path without the query string.
        headers: Request headers (lower-cased names).
        query_params: Parsed query string.
        body: Parsed JSON body, raw text for non-JSON payloads, or None.
        client_host: Socket peer address.
        user: Identity attached by the auth gate.
        state: Free-form per-request scratch space for stages.
    """

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    client_host: Optional[str] = None
    user: Optional[AuthUser] = None
    state: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    @property
    def client_address(self) -> Optional[str]:
        """
        Client network address.

        Uses the first hop of X-Forwarded-For when behind a proxy, otherwise
        the socket peer address.
        """
        forwarded = self.header("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.client_host


# =============================================================================
# ApiResponse
# =============================================================================


class ApiResponse:
    """
    Outbound response with an exactly-once completion contract.

    The first call to `json()` or `send()` stores the body, marks the response
    finished and runs every completion callback once, in registration order.
    Any later body write raises ResponseAlreadySentError, as does registering
    a callback or changing headers on a finished response.

    Completion callbacks are bookkeeping: a failing callback is logged and
    neither affects the response nor the remaining callbacks.

    Background callables run after the framework has sent the response.

    Example:
        >>> response = ApiResponse()
        >>> response.on_complete(record_status)
        >>> await response.status(201).json({"id": "user-1"})
    """

    def __init__(self, status_code: int = 200) -> None:
        self.status_code: int = status_code
        self.headers: dict[str, str] = {}
        self.body: Any = None
        self.media_type: Optional[str] = None
        self._finished = False
        self._callbacks: list[CompletionCallback] = []
        self._background: list[BackgroundCallable] = []

    @property
    def finished(self) -> bool:
        """True once a body has been written."""
        return self._finished

    @property
    def is_json(self) -> bool:
        return self.media_type == "application/json"

    # -------------------------------------------------------------------------
    # Status and headers
    # -------------------------------------------------------------------------

    def status(self, status_code: int) -> "ApiResponse":
        """Set the status code. Returns self for chaining."""
        self._ensure_open()
        self.status_code = status_code
        return self

    def set_header(self, name: str, value: Any) -> None:
        """Set a header, replacing any existing value regardless of case."""
        self._ensure_open()
        for existing in list(self.headers):
            if existing.lower() == name.lower():
                del self.headers[existing]
        self.headers[name] = str(value)

    def get_header(self, name: str) -> Optional[str]:
        for existing, value in self.headers.items():
            if existing.lower() == name.lower():
                return value
        return None

    # -------------------------------------------------------------------------
    # Body emission
    # -------------------------------------------------------------------------

    async def json(self, data: Any) -> None:
        """Write a structured JSON body and finalize the response."""
        self._ensure_open()
        self.body = data
        self.media_type = "application/json"
        await self._finish()

    async def send(
        self,
        content: Union[bytes, str, None] = b"",
        media_type: str = "text/plain",
    ) -> None:
        """Write a raw body and finalize the response."""
        self._ensure_open()
        self.body = content if content is not None else b""
        self.media_type = media_type
        await self._finish()

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def on_complete(self, callback: CompletionCallback) -> None:
        """Register a callback to run once when the body is written."""
        if self._finished:
            raise ResponseAlreadySentError(
                "Cannot observe completion of a response that has already been sent"
            )
        self._callbacks.append(callback)

    def add_background(self, func: BackgroundCallable) -> None:
        """Schedule work to run after the response has been delivered."""
        self._background.append(func)

    async def run_background(self) -> None:
        """Run scheduled background work. Failures are logged, not raised."""
        pending, self._background = self._background, []
        for func in pending:
            try:
                await func()
            except Exception as e:
                logger.error(f"Background task failed: {type(e).__name__}: {e}")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._finished:
            raise ResponseAlreadySentError()

    async def _finish(self) -> None:
        self._finished = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                await callback(self)
            except Exception as e:
                logger.error(
                    f"Response completion callback failed: {type(e).__name__}: {e}"
                )
