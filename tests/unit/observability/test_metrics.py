"""
Tests for Prometheus metrics and the metrics middleware.
"""

from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from api_guard.observability.metrics import (
    MetricsMiddleware,
    generate_metrics,
    normalize_path,
    record_audit_write,
    record_auth_outcome,
    record_rate_limit_decision,
    record_stage_error,
)


def _sample(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestNormalizePath:

    def test_static_path_unchanged(self):
        assert normalize_path("/api/health") == "/api/health"

    def test_uuid_segment(self):
        assert (
            normalize_path("/api/users/123e4567-e89b-12d3-a456-426614174000")
            == "/api/users/{id}"
        )

    def test_numeric_segment(self):
        assert normalize_path("/api/users/12345/sessions") == "/api/users/{id}/sessions"

    def test_root(self):
        assert normalize_path("/") == "/"


class TestPipelineCounters:

    def test_rate_limit_decision_counter(self):
        before = _sample("api_guard_rate_limit_decisions_total", {"decision": "denied"})
        record_rate_limit_decision("denied")
        after = _sample("api_guard_rate_limit_decisions_total", {"decision": "denied"})
        assert after == before + 1

    def test_auth_outcome_counter(self):
        before = _sample("api_guard_auth_outcomes_total", {"outcome": "forbidden"})
        record_auth_outcome("forbidden")
        assert _sample("api_guard_auth_outcomes_total", {"outcome": "forbidden"}) == before + 1

    def test_audit_write_counter(self):
        before = _sample("api_guard_audit_writes_total", {"result": "failed"})
        record_audit_write("failed")
        assert _sample("api_guard_audit_writes_total", {"result": "failed"}) == before + 1

    def test_stage_error_counter(self):
        before = _sample("api_guard_stage_errors_total", {"stage": "metrics_test"})
        record_stage_error("metrics_test")
        assert _sample("api_guard_stage_errors_total", {"stage": "metrics_test"}) == before + 1

    def test_generate_metrics_is_exposition_text(self):
        text = generate_metrics()
        assert "api_guard_rate_limit_decisions_total" in text


class TestMetricsMiddleware:

    def _client(self) -> TestClient:
        app = FastAPI()
        app.add_middleware(MetricsMiddleware)

        @app.get("/api/items/{item_id}")
        async def item(item_id: int):
            return {"id": item_id}

        @app.get("/api/metrics")
        async def metrics():
            return {}

        return TestClient(app)

    def test_counts_requests_with_normalized_path(self):
        labels = {"method": "GET", "path": "/api/items/{id}", "status": "200"}
        before = _sample("api_guard_requests_total", labels)

        self._client().get("/api/items/42")

        assert _sample("api_guard_requests_total", labels) == before + 1

    def test_metrics_path_is_excluded(self):
        labels = {"method": "GET", "path": "/api/metrics", "status": "200"}
        before = _sample("api_guard_requests_total", labels)

        self._client().get("/api/metrics")

        assert _sample("api_guard_requests_total", labels) == before
