"""OpenTelemetry provider for a CLI run."""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .. import __version__
from ..config import Settings

logger = logging.getLogger(__name__)


def setup_telemetry(settings: Settings) -> None:
    """
    Install a tracer provider exporting to the OTLP collector.

    Does nothing unless OTEL_ENABLED is set. Spans are tagged with the
    GCP project, zone and cluster the command targets. The batch processor
    is flushed when the interpreter exits.
    """
    if not settings.telemetry.enabled:
        logger.debug("Tracing disabled")
        return

    provider = TracerProvider(
        resource=Resource.create({
            "service.name": settings.telemetry.service_name,
            "service.version": __version__,
            "cloud.provider": "gcp",
            "cloud.account.id": settings.gcp.project_id,
            "cloud.availability_zone": settings.gcp.zone,
            "k8s.cluster.name": settings.gcp.cluster_name,
        }),
        shutdown_on_exit=True,
    )
    try:
        exporter = OTLPSpanExporter(endpoint=settings.telemetry.exporter_endpoint, insecure=True)
    except Exception as e:
        # Spans are still created, just not exported.
        logger.warning(f"Failed to configure OTLP exporter: {e}")
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"Exporting traces to {settings.telemetry.exporter_endpoint}")
    trace.set_tracer_provider(provider)
