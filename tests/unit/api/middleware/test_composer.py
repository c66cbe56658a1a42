"""
Tests for the middleware composer and the stage registry.
"""

from unittest.mock import AsyncMock

import pytest

from api_guard.api.context import ApiResponse
from api_guard.api.middleware.audit_log import AuditLogOptions, AuditRecorder
from api_guard.api.middleware.composer import (
    Pipeline,
    PipelineConfig,
    StageRegistry,
    combine,
    create_default_registry,
    with_security,
)
from api_guard.api.middleware.rate_limit import RateLimiter, RateLimitOptions
from api_guard.core.exceptions import ContinuationError, PipelineConfigurationError


def recording_stage(name, events):
    async def stage(request, response, call_next):
        events.append(f"{name}:before")
        await call_next()
        events.append(f"{name}:after")

    stage.__name__ = name
    return stage


def short_circuit_stage(name, events, status=418):
    async def stage(request, response, call_next):
        events.append(f"{name}:respond")
        await response.status(status).json({"stage": name})

    stage.__name__ = name
    return stage


def recording_handler(events):
    async def handler(request, response):
        events.append("handler")
        await response.json({"ok": True})

    return handler


class TestCombine:

    @pytest.mark.asyncio
    async def test_runs_stages_in_order_around_handler(self, make_request):
        events = []
        pipeline = combine([recording_stage(n, events) for n in ("a", "b", "c")])

        await pipeline.wrap(recording_handler(events))(make_request(), ApiResponse())

        assert events == [
            "a:before", "b:before", "c:before",
            "handler",
            "c:after", "b:after", "a:after",
        ]

    @pytest.mark.asyncio
    async def test_short_circuit_stops_downstream(self, make_request):
        events = []
        pipeline = combine(
            [recording_stage("a", events), short_circuit_stage("b", events), recording_stage("c", events)]
        )
        response = ApiResponse()

        await pipeline.wrap(recording_handler(events))(make_request(), response)

        assert events == ["a:before", "b:respond", "a:after"]
        assert response.status_code == 418

    @pytest.mark.asyncio
    async def test_pipeline_is_a_stage(self, make_request):
        events = []
        inner = combine([recording_stage("b", events)])
        outer = combine([recording_stage("a", events), inner])
        call_next = AsyncMock()

        await outer(make_request(), ApiResponse(), call_next)

        call_next.assert_awaited_once()
        assert events == ["a:before", "b:before", "b:after", "a:after"]

    @pytest.mark.asyncio
    async def test_empty_pipeline_delegates(self, make_request):
        call_next = AsyncMock()
        await combine([])(make_request(), ApiResponse(), call_next)
        call_next.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_request_mutations_flow_downstream(self, make_request):
        seen = []

        async def inject(request, response, call_next):
            request.state["tenant"] = "t-1"
            await call_next()

        async def handler(request, response):
            seen.append(request.state.get("tenant"))
            await response.json({})

        await combine([inject]).wrap(handler)(make_request(), ApiResponse())

        assert seen == ["t-1"]

    def test_then_returns_new_pipeline(self):
        base = combine([recording_stage("a", [])])
        extended = base.then(recording_stage("b", []))

        assert base.names == ("a",)
        assert extended.names == ("a", "b")
        assert isinstance(extended, Pipeline)
        assert len(extended) == 2


class TestErrorIsolation:

    @pytest.mark.asyncio
    async def test_stage_setup_error_continues_chain(self, make_request):
        events = []

        async def broken(request, response, call_next):
            raise RuntimeError("bug before delegating")

        broken.__name__ = "broken"
        pipeline = combine([recording_stage("a", events), broken, recording_stage("c", events)])
        response = ApiResponse()

        await pipeline.wrap(recording_handler(events))(make_request(), response)

        assert events == ["a:before", "c:before", "handler", "c:after", "a:after"]
        assert response.body == {"ok": True}

    @pytest.mark.asyncio
    async def test_handler_error_propagates_unchanged(self, make_request):
        events = []
        error = LookupError("not found in table")

        async def handler(request, response):
            raise error

        pipeline = combine([recording_stage("a", events), recording_stage("b", events)])

        with pytest.raises(LookupError) as exc_info:
            await pipeline.wrap(handler)(make_request(), ApiResponse())

        assert exc_info.value is error
        assert events == ["a:before", "b:before"]

    @pytest.mark.asyncio
    async def test_handler_runs_once_when_stage_fails_after_delegating(self, make_request):
        handler = AsyncMock()

        async def fails_after(request, response, call_next):
            await call_next()
            raise RuntimeError("bookkeeping bug")

        await combine([fails_after]).wrap(handler)(make_request(), ApiResponse())

        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stage_failing_after_response_is_swallowed(self, make_request):
        handler = AsyncMock()

        async def responds_then_fails(request, response, call_next):
            await response.status(403).json({"error": "no"})
            raise RuntimeError("late bug")

        response = ApiResponse()
        await combine([responds_then_fails]).wrap(handler)(make_request(), response)

        handler.assert_not_awaited()
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_second_continuation_call_raises(self, make_request):
        handler = AsyncMock()
        raised = []

        async def calls_twice(request, response, call_next):
            await call_next()
            try:
                await call_next()
            except ContinuationError as e:
                raised.append(e.stage)

        calls_twice.__name__ = "calls_twice"
        await combine([calls_twice]).wrap(handler)(make_request(), ApiResponse())

        handler.assert_awaited_once()
        assert raised == ["calls_twice"]

    @pytest.mark.asyncio
    async def test_stage_that_neither_continues_nor_responds(self, make_request):
        handler = AsyncMock()

        async def idle(request, response, call_next):
            return None

        response = ApiResponse()
        await combine([idle]).wrap(handler)(make_request(), response)

        handler.assert_not_awaited()
        assert not response.finished


class TestStageRegistry:

    def _registry(self, events):
        registry = StageRegistry()
        for name in ("first", "second", "third"):
            registry.register(name, lambda options, n=name: recording_stage(n, events))
        return registry

    def test_default_pipeline_uses_registration_order(self):
        registry = self._registry([])
        assert registry.default_pipeline().names == ("first", "second", "third")

    def test_default_pipeline_is_built_once(self):
        registry = self._registry([])
        assert registry.default_pipeline() is registry.default_pipeline()

    def test_skip_removes_stage(self):
        registry = self._registry([])
        pipeline = registry.build(PipelineConfig(skip=["second"]))
        assert pipeline.names == ("first", "third")

    def test_unknown_names_are_rejected(self):
        registry = self._registry([])

        with pytest.raises(PipelineConfigurationError):
            registry.build(PipelineConfig(skip=["rateLimit"]))
        with pytest.raises(PipelineConfigurationError):
            registry.build(PipelineConfig(overrides={"nope": {}}))
        with pytest.raises(PipelineConfigurationError):
            registry.create("nope")

    def test_duplicate_registration_is_rejected(self):
        registry = self._registry([])
        with pytest.raises(PipelineConfigurationError):
            registry.register("first", lambda options: None)


class TestDefaultRegistry:

    def test_names_and_order(self, memory_store, audit_sink):
        registry = create_default_registry(store=memory_store, sink=audit_sink)

        assert registry.names == ("rate_limit", "security_headers", "audit_log")
        assert registry.default_pipeline().names == ("rate_limit", "security_headers", "audit_log")

    def test_mapping_override_applies_over_defaults(self, memory_store, audit_sink):
        registry = create_default_registry(store=memory_store, sink=audit_sink)

        pipeline = registry.build(
            PipelineConfig(overrides={"rate_limit": {"max_requests": 5}}, skip=["security_headers"])
        )

        limiter = pipeline.stages[0]
        assert isinstance(limiter, RateLimiter)
        assert limiter.options.max_requests == 5
        assert limiter.options.window_ms == 900_000
        assert pipeline.names == ("rate_limit", "audit_log")

    def test_options_instance_override(self, memory_store, audit_sink):
        registry = create_default_registry(store=memory_store, sink=audit_sink)
        options = AuditLogOptions(log_headers=True)

        recorder = registry.create("audit_log", options)

        assert isinstance(recorder, AuditRecorder)
        assert recorder.options is options

    def test_invalid_override_field(self, memory_store, audit_sink):
        registry = create_default_registry(store=memory_store, sink=audit_sink)

        with pytest.raises(PipelineConfigurationError):
            registry.build(PipelineConfig(overrides={"rate_limit": {"max": 5}}))
        with pytest.raises(PipelineConfigurationError):
            registry.build(PipelineConfig(overrides={"rate_limit": {"window_ms": 0}}))

    @pytest.mark.asyncio
    async def test_with_security_appends_extra_stages(self, memory_store, audit_sink, make_request):
        registry = create_default_registry(store=memory_store, sink=audit_sink)
        events = []

        handler = with_security(
            recording_handler(events),
            registry,
            PipelineConfig(overrides={"rate_limit": RateLimitOptions(max_requests=1)}),
            extra_stages=[recording_stage("auth", events)],
        )

        first = ApiResponse()
        await handler(make_request(), first)
        await first.run_background()
        second = ApiResponse()
        await handler(make_request(), second)
        await second.run_background()

        assert events == ["auth:before", "handler", "auth:after"]
        assert first.get_header("X-Frame-Options") == "SAMEORIGIN"
        assert second.status_code == 429
        assert len(audit_sink.entries) == 1
