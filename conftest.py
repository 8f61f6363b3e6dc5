# Ensure tests import modules from this service directory first, so that
# `import app.*` resolves to this checkout.
import os
import sys

import httpx
import pytest

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)


class UpstreamRecorder:
    """Stands in for the upstream API and records what reached it."""

    def __init__(self, responder=None):
        self.requests = []
        self.responder = responder or (
            lambda request: httpx.Response(200, json={"ok": True})
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]


@pytest.fixture
def upstream():
    return UpstreamRecorder()


@pytest.fixture
def proxy_client(upstream):
    """TestClient factory for a proxy app wired to the recording upstream."""
    from fastapi.testclient import TestClient

    from app.hcp_proxy.config import ProxyConfig
    from app.server import create_app

    def _create(**config_kwargs):
        config = ProxyConfig(**config_kwargs)
        app = create_app(config, transport=upstream.transport, instrument=False)
        return TestClient(app)

    return _create
