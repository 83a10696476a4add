"""OpenTelemetry wiring: OTLP exporter, FastAPI spans and an engine tracer."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from debitrecon.common.config import settings


# Resolves through the global provider, so it is a no-op until setup_tracing runs.
tracer = trace.get_tracer("debitrecon")


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider exporting over OTLP/HTTP, unless disabled."""

    if not settings.otel_enabled:
        return
    resource = Resource.create({"service.name": service_name, "billing.channel": settings.pd_channel})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
