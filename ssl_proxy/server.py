import logging
from contextlib import asynccontextmanager
from typing import Sequence

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
from prometheus_client import Info, start_http_server
from prometheus_fastapi_instrumentator import Instrumentator

from ssl_proxy.proxy import ProxyConfig, router
from ssl_proxy.vars import HOST, METRICS_PORT, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streamed responses.
    Every relayed chunk would otherwise produce its own span.
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


def create_app(config: ProxyConfig) -> FastAPI:
    """Build the ASGI application around an already validated ``ProxyConfig``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await config.registry.aclose()
        logger.info("Closed upstream connection pools")

    app = FastAPI(
        title=SERVICE_NAME,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.proxy_config = config
    app.include_router(router)
    return app


def configure_telemetry(app: FastAPI) -> None:
    """Install tracing and metrics. Called once per process, from ``main``."""
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    tracer_provider = trace.get_tracer_provider()
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=OTLP_HEADERS or None,
        )
        span_processor = BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        tracer_provider.add_span_processor(span_processor)
        logger.info(f"Exporting traces to {OTLP_ENDPOINT}")

    FastAPIInstrumentor.instrument_app(app)

    # Every path on the proxy listener belongs to an upstream, so metrics
    # get their own listener.
    Instrumentator().instrument(app)
    app_info = Info("ssl_proxy_app_info", "Application Info")
    app_info.info({"app_name": SERVICE_NAME})
    if METRICS_PORT:
        start_http_server(METRICS_PORT, addr=HOST)
        logger.info(f"Serving metrics on http://{HOST}:{METRICS_PORT}/metrics")
