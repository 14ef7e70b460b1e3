"""OpenTelemetry tracing for cosmos-gke runs."""

from .setup import setup_telemetry
from .tracing import get_tracer, step_span, traced

__all__ = ["setup_telemetry", "traced", "step_span", "get_tracer"]
