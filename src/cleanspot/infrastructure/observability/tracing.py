"""OpenTelemetry distributed tracing configuration."""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from cleanspot import __version__

logger = logging.getLogger(__name__)


# Hey future me - tracing is OFF unless observability.tracing_enabled is set. Without a
# configured provider get_tracer() hands out the no-op tracer from the API package, so the
# spans in the workers cost nothing in tests or in deployments that don't collect traces.
def configure_tracing(
    service_name: str = "cleanspot",
    environment: str = "development",
    otlp_endpoint: str | None = None,
    enable_console_exporter: bool = False,
) -> TracerProvider:
    """Configure OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        environment: Environment name (development, staging, production)
        otlp_endpoint: OTLP exporter endpoint (e.g., "http://localhost:4317")
        enable_console_exporter: Also print spans to stdout

    Returns:
        Configured tracer provider
    """
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": environment,
        }
    )
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
            )
            logger.info("OTLP trace exporter configured: %s", otlp_endpoint)
        except Exception as e:
            logger.warning("Failed to configure OTLP exporter: %s", e)

    if enable_console_exporter:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console trace exporter enabled")

    trace.set_tracer_provider(provider)
    logger.info(
        "Tracing configured",
        extra={"service_name": service_name, "environment": environment},
    )
    return provider


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)
    logger.info("FastAPI instrumented with OpenTelemetry")


def instrument_httpx() -> None:
    """Instrument every httpx client (the Spotify adapter) with OpenTelemetry."""
    HTTPXClientInstrumentor().instrument()
    logger.info("HTTPX client instrumented with OpenTelemetry")


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance (no-op until configure_tracing() ran)."""
    return trace.get_tracer(name)
