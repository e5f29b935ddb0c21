"""
Tests for structured JSON logging

Tests cover:
- Correlation ID read from request context, 'none' outside a request
- Service and environment fields on every record
- Correlation ID attached to responses by the middleware
"""

import json
import logging

import pytest
from asgi_correlation_id.context import correlation_id
from fastapi.testclient import TestClient

from gateway_reports.main import app
from gateway_reports.middleware import get_correlation_id
from gateway_reports.services.monitoring import CorrelationJsonFormatter
from gateway_reports.services.monitoring.logging import SERVICE_NAME


def make_log_record(message="report_cache_miss"):
    return logging.LogRecord(
        name="gateway_reports.services.report_cache",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )


@pytest.fixture
def formatter():
    return CorrelationJsonFormatter('%(name)s %(message)s')


@pytest.fixture
def request_context():
    token = correlation_id.set("req-123")
    yield "req-123"
    correlation_id.reset(token)


class TestGetCorrelationId:

    def test_outside_request(self):
        assert get_correlation_id() == "none"

    def test_inside_request(self, request_context):
        assert get_correlation_id() == request_context


class TestCorrelationJsonFormatter:

    def test_injects_request_correlation_id(self, formatter, request_context):
        payload = json.loads(formatter.format(make_log_record()))

        assert payload["correlation_id"] == "req-123"
        assert payload["message"] == "report_cache_miss"

    def test_scheduler_context_logs_none(self, formatter):
        payload = json.loads(formatter.format(make_log_record("aggregation_sweep_started")))

        assert payload["correlation_id"] == "none"

    def test_service_and_environment(self, formatter, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "testing")

        payload = json.loads(formatter.format(make_log_record()))

        assert payload["service"] == SERVICE_NAME
        assert payload["environment"] == "testing"


class TestMiddleware:

    def test_response_carries_request_id(self):
        client = TestClient(app)

        response = client.get("/", headers={"X-Request-ID": "0f8fad5b-d9cb-469f-a165-70867728950e"})

        assert response.headers["X-Request-ID"] == "0f8fad5b-d9cb-469f-a165-70867728950e"
