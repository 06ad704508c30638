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

from proxyhub.config import load_proxy_configs
from proxyhub.proxy import ProxyRegistry
from proxyhub.routes import router
from proxyhub.vars import (
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_CONFIG_FILE,
    PROXY_MAX_CONNECTIONS,
    PROXY_MAX_KEEPALIVE,
    PROXY_TIMEOUT,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans.
    Relayed upstream bodies are streamed, which produces one span per chunk.
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


def configure_tracing(app: FastAPI) -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    tracer_provider = trace.get_tracer_provider()
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
    FastAPIInstrumentor.instrument_app(app)


def build_client() -> httpx.AsyncClient:
    """Shared upstream client; every proxy instance forwards through its pool."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        limits=httpx.Limits(
            max_connections=PROXY_MAX_CONNECTIONS,
            max_keepalive_connections=PROXY_MAX_KEEPALIVE,
        ),
        follow_redirects=False,
    )


def create_app(registry: Optional[ProxyRegistry] = None) -> FastAPI:
    """
    Build the proxy application.

    Without an explicit registry, one is built at startup from
    PROXY_CONFIG_FILE around a shared httpx client that is closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if registry is not None:
            app.state.registry = registry
            yield
            return

        client = build_client()
        app.state.registry = ProxyRegistry(
            load_proxy_configs(PROXY_CONFIG_FILE), client=client
        )
        logger.info(
            f"[Server] Serving proxies: {', '.join(app.state.registry.names()) or '<none>'}"
        )
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(lifespan=lifespan)
    if registry is not None:
        app.state.registry = registry

    app.include_router(router)
    return app


app = create_app()
Instrumentator().instrument(app).expose(app)
configure_tracing(app)

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})
