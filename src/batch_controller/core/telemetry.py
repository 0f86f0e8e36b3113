"""OpenTelemetry tracing for reconciliation passes and the HTTP surface."""

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

if TYPE_CHECKING:
    from fastapi import FastAPI

from batch_controller.core.config import Settings

logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.1.0"


def setup_telemetry(app: "FastAPI", settings: Settings) -> None:
    """Install a tracer provider and instrument the FastAPI app.

    Development exports spans to the console when debug is on; staging and
    production export over OTLP gRPC.
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": SERVICE_VERSION,
            "deployment.environment": settings.environment,
            "k8s.job.group": settings.job_group,
        }
    )
    provider = TracerProvider(resource=resource)

    if settings.environment == "development":
        if settings.debug:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        try:
            exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))
        except Exception as e:
            logger.warning("Failed to configure OTLP exporter: %s", e)

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)

    logger.info(
        "OpenTelemetry configured: service=%s, environment=%s",
        settings.otel_service_name,
        settings.environment,
    )


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name."""
    return trace.get_tracer(name)
