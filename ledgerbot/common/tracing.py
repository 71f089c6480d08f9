"""OpenTelemetry setup for the webhook process.

Tracing stays on the no-op global provider unless an OTLP endpoint is
configured, so tests and scripts never try to export spans.
"""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ledgerbot.common.config import settings


tracer = trace.get_tracer("ledgerbot")


def setup_tracing(service_name: str, endpoint: str | None = None) -> bool:
    """Register a tracer provider with OTLP HTTP exporter; returns False when disabled."""

    endpoint = endpoint if endpoint is not None else settings.otel_exporter_otlp_endpoint
    if not endpoint:
        return False
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return True


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    FastAPIInstrumentor.instrument_app(app)
