import logging
from typing import Sequence

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
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

from webproxy.proxy.route import router
from webproxy.vars import (
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_PATH,
    REWRITE_POLICY,
    SERVICE_NAME,
    STATIC_DIR,
)

logger = logging.getLogger("uvicorn.error")

app = FastAPI()
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app)


def _parse_otlp_headers(raw: str):
    """Parse "key=value,key2=value2" into exporter headers."""
    headers = {}
    for entry in raw.split(","):
        if "=" in entry:
            key, value = entry.split("=", 1)
            headers[key.strip()] = value.strip()
    return headers or None


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streamed
    responses. A large proxied download would otherwise produce one span
    per chunk.
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
        headers=_parse_otlp_headers(OTLP_HEADERS),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app, excluded_urls="/metrics")

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME, "rewrite_policy": REWRITE_POLICY})

app.include_router(router)
logger.info(f"Proxy endpoint mounted at {PROXY_PATH} (rewrite policy: {REWRITE_POLICY})")

# Everything that is not the proxy endpoint is served as static assets
if STATIC_DIR:
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
    logger.info(f"Serving static assets from {STATIC_DIR}")
