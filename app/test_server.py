from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from app.hcp_proxy.config import ProxyConfig
from app.server import FilteringSpanExporter, create_app, log_startup


@pytest.fixture(scope="module")
def test_client():
    from app.server import app

    with TestClient(app) as client:
        yield client


def test_health_endpoint(test_client):
    r = test_client.get("/healthz")
    assert r.status_code == 200, f"Unexpected status code: {r.status_code}, {r.text}"
    assert r.json() == {"status": "ok"}


def test_metrics_exposed(test_client):
    test_client.get("/healthz")
    r = test_client.get("/metrics")
    assert r.status_code == 200, f"Unexpected status code: {r.status_code}, {r.text}"
    assert "fastapi_app_info" in r.text


def test_unknown_path_is_plain_not_found(test_client):
    r = test_client.get("/openapi.json")
    assert r.status_code == 404
    assert r.text == "Not found"


def test_create_app_keeps_config():
    config = ProxyConfig(prefix="/hcp", default_base="https://api.example.com")
    app = create_app(config, instrument=False)

    assert app.state.config is config
    assert app.state.proxy.config is config


def test_lifespan_closes_upstream_client():
    app = create_app(ProxyConfig(), instrument=False)

    with TestClient(app):
        assert not app.state.proxy.client.is_closed

    assert app.state.proxy.client.is_closed


def test_startup_log_without_default_base(caplog):
    with caplog.at_level("INFO", logger="uvicorn.error"):
        log_startup(ProxyConfig(default_base=None, allowed_origins={"https://a.com"}))

    assert "requests must supply X-Hcp-Api-Base" in caplog.text
    assert "allows all origins" not in caplog.text


def test_startup_log_with_default_base(caplog):
    with caplog.at_level("INFO", logger="uvicorn.error"):
        log_startup(ProxyConfig(default_base="https://api.example.com"))

    assert "Forwarding to https://api.example.com" in caplog.text
    assert "allows all origins" in caplog.text


class TestFilteringSpanExporter:
    """Test removal of per-chunk ASGI body spans."""

    def test_body_spans_dropped(self):
        inner = Mock()
        exporter = FilteringSpanExporter(inner)
        body_span = SimpleNamespace(attributes={"asgi.event.type": "http.response.body"})
        request_span = SimpleNamespace(attributes={"proxy.method": "GET"})

        exporter.export([body_span, request_span])

        inner.export.assert_called_once_with([request_span])

    def test_nothing_left_is_success(self):
        from opentelemetry.sdk.trace.export import SpanExportResult

        inner = Mock()
        exporter = FilteringSpanExporter(inner)
        body_span = SimpleNamespace(attributes={"asgi.event.type": "http.response.body"})

        assert exporter.export([body_span]) == SpanExportResult.SUCCESS
        inner.export.assert_not_called()
