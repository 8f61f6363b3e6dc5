import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from app.hcp_proxy.config import ProxyConfig
from app.hcp_proxy.route import HcpProxy, build_router
from app.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    A relayed upstream body would otherwise produce one span per chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )


def log_startup(config: ProxyConfig) -> None:
    logger.info(
        f"[Startup] HCP proxy on port {config.port}, serving prefix {config.prefix}"
    )
    if config.default_base:
        logger.info(f"[Startup] Forwarding to {config.default_base}")
    else:
        logger.info(
            "[Startup] No default base configured; requests must supply X-Hcp-Api-Base."
        )
    if config.allows_any_origin:
        logger.warning(
            "[Startup] CORS allows all origins. Set ALLOWED_ORIGINS to restrict access."
        )


def create_app(
    config: Optional[ProxyConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    instrument: bool = True,
) -> FastAPI:
    """
    Build the proxy application.

    ``transport`` replaces the network transport of the upstream client, and
    ``instrument`` toggles Prometheus metrics and FastAPI tracing, which may
    only be registered once per process.
    """
    config = config or ProxyConfig.from_env()
    proxy = HcpProxy(config, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_startup(config)
        yield
        await proxy.aclose()

    # The catch-all proxy route owns every path, docs included
    app = FastAPI(
        title=SERVICE_NAME,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.proxy = proxy

    if instrument:
        Instrumentator().instrument(app).expose(app, include_in_schema=False)
        FastAPIInstrumentor.instrument_app(app, excluded_urls="")

    app.include_router(build_router(proxy))
    return app


app = create_app()

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})
