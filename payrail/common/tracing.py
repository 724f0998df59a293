"""OpenTelemetry wiring: OTLP export for the API and spans around provider calls."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from payrail.common.config import settings
from payrail.common.logging import logger

tracer = trace.get_tracer("payrail")


def setup_tracing(service_name: str) -> bool:
    """Install an OTLP-exporting tracer provider; False when no endpoint is configured."""

    if not settings.otel_exporter_otlp_endpoint:
        logger.info("tracing disabled: no OTLP endpoint configured")
        return False
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)
    return True


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app)


def provider_span(provider: str, operation: str):
    """Client span for one outbound provider call. No-op until a provider is installed."""

    return tracer.start_as_current_span(
        f"{provider}.{operation}",
        kind=trace.SpanKind.CLIENT,
        attributes={"payment.provider": provider, "payment.operation": operation},
    )
