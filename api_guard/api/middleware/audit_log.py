"""
Audit Logging Stage.

Wraps the downstream chain so exactly one AuditEntry is written per audited
request, however the request ends:

- a body is written (JSON or raw): the completion callback captures status,
  latency and the sanitized JSON response body, and the sink write is
  scheduled to run after the response has been delivered;
- the chain returns without writing a body: the entry is written with the
  current status once the chain returns;
- the chain raises: the entry is written immediately with status 500 and the
  error message, then the original exception is re-raised unchanged.

The identity reference is read when the entry is finalized, so an identity
attached by an auth gate further down the chain is recorded.

Sink failures are logged and never reach the caller.

Pattern: Observer on ApiResponse completion instead of response patching
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from api_guard.api.context import ApiRequest, ApiResponse, Continuation
from api_guard.api.middleware.redaction import redact_sensitive_headers, sanitize_data
from api_guard.clients.audit_sink import AuditSink
from api_guard.core.exceptions import AuditSinkError
from api_guard.models.domain import AuditEntry
from api_guard.observability.metrics import record_audit_write


logger = logging.getLogger(__name__)


CustomFields = Callable[[ApiRequest], dict[str, Any]]


@dataclass(frozen=True)
class AuditLogOptions:
    """
    Audit logging configuration.

    Attributes:
        exclude_paths: Path prefixes that are never audited.
        exclude_methods: HTTP methods that are never audited.
        sensitive_fields: Top-level keys replaced with the redaction marker.
        log_body: Record the request body and the JSON response body.
        log_query: Record query parameters.
        log_headers: Record request headers (credential headers are masked).
        custom_fields: Extractor whose result is merged into every entry.
    """

    exclude_paths: tuple[str, ...] = ("/api/health", "/api/metrics")
    exclude_methods: tuple[str, ...] = ("OPTIONS",)
    sensitive_fields: tuple[str, ...] = (
        "password",
        "token",
        "secret",
        "apiKey",
        "credit_card",
    )
    log_body: bool = True
    log_query: bool = True
    log_headers: bool = False
    custom_fields: Optional[CustomFields] = None


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AuditRecorder:
    """
    Audit logging stage over an AuditSink.

    Example:
        >>> recorder = AuditRecorder(sink=InMemoryAuditSink())
        >>> pipeline = combine([recorder, auth_gate.as_stage()])
    """

    stage_name = "audit_log"

    def __init__(
        self,
        sink: AuditSink,
        options: Optional[AuditLogOptions] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.sink = sink
        self.options = options or AuditLogOptions()
        self._clock = clock

    def is_excluded(self, request: ApiRequest) -> bool:
        if request.method in self.options.exclude_methods:
            return True
        return any(request.path.startswith(p) for p in self.options.exclude_paths)

    def base_fields(self, request: ApiRequest) -> dict[str, Any]:
        """Request-derived fields, sanitized, captured when the request enters."""
        opts = self.options
        fields: dict[str, Any] = {
            "timestamp": _utc_timestamp(),
            "method": request.method,
            "path": request.path,
            "ip_address": request.client_address,
            "user_agent": request.header("user-agent"),
        }

        if opts.custom_fields is not None:
            fields.update(opts.custom_fields(request))

        if opts.log_query and request.query_params:
            fields["query_params"] = sanitize_data(request.query_params, opts.sensitive_fields)
        if opts.log_body and request.body:
            fields["request_body"] = sanitize_data(request.body, opts.sensitive_fields)
        if opts.log_headers:
            fields["headers"] = redact_sensitive_headers(
                sanitize_data(request.headers, opts.sensitive_fields)
            )

        return fields

    def finalize(
        self,
        fields: dict[str, Any],
        request: ApiRequest,
        status_code: int,
        started: float,
        response: Optional[ApiResponse] = None,
        error: Optional[BaseException] = None,
    ) -> AuditEntry:
        """Complete the entry with outcome, latency and identity."""
        record = dict(fields)
        record["user_id"] = request.user.id if request.user is not None else None
        record["status_code"] = status_code
        record["response_time"] = int(round((self._clock() - started) * 1000))

        if (
            self.options.log_body
            and response is not None
            and response.is_json
            and response.body is not None
        ):
            record["response_body"] = sanitize_data(response.body, self.options.sensitive_fields)

        if error is not None:
            record["error"] = str(error) or type(error).__name__

        return AuditEntry(**record)

    async def persist(self, entry: AuditEntry) -> None:
        """Write `entry` to the sink. Failures are logged, never raised."""
        try:
            await self.sink.insert(entry)
        except AuditSinkError as e:
            logger.error(f"Error saving audit log: {e.message}")
            record_audit_write("failed")
            return
        except Exception as e:
            logger.error(f"Error saving audit log: {type(e).__name__}: {e}")
            record_audit_write("failed")
            return
        record_audit_write("written")

    async def __call__(
        self,
        request: ApiRequest,
        response: ApiResponse,
        call_next: Continuation,
    ) -> None:
        if self.is_excluded(request) or response.finished:
            await call_next()
            return

        started = self._clock()
        fields = self.base_fields(request)
        recorded = False
        pending: Optional[AuditEntry] = None

        async def write_pending() -> None:
            nonlocal pending
            entry, pending = pending, None
            if entry is not None:
                await self.persist(entry)

        async def record_completion(completed: ApiResponse) -> None:
            nonlocal recorded, pending
            if recorded:
                return
            recorded = True
            pending = self.finalize(
                fields, request, completed.status_code, started, response=completed
            )
            completed.add_background(write_pending)

        response.on_complete(record_completion)

        try:
            await call_next()
        except Exception as e:
            logger.error(f"Audit log middleware error: {type(e).__name__}: {e}")
            if not recorded:
                recorded = True
                entry = self.finalize(fields, request, 500, started, error=e)
                await self.persist(entry)
            else:
                # Background work only runs once a response is rendered
                await write_pending()
            raise

        if not recorded:
            recorded = True
            entry = self.finalize(
                fields, request, response.status_code, started, response=response
            )
            await self.persist(entry)


def audit_log(
    options: Optional[AuditLogOptions] = None,
    *,
    sink: AuditSink,
) -> AuditRecorder:
    """Build an audit logging stage writing to `sink`."""
    return AuditRecorder(sink=sink, options=options)
