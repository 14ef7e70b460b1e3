"""Spans for provisioning, deployment and teardown runs."""

import functools
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

TRACER_NAME = "cosmos-gke"


def get_tracer() -> trace.Tracer:
    """Tracer from the currently installed provider (no-op until configured)."""
    return trace.get_tracer(TRACER_NAME)


def _cluster_attributes(owner: Any) -> dict[str, str]:
    """Project, zone and cluster of a service instance that carries settings."""
    settings = getattr(owner, "settings", None)
    if settings is None:
        return {}
    return {
        "gcp.project_id": settings.gcp.project_id,
        "gcp.zone": settings.gcp.zone,
        "k8s.cluster.name": settings.gcp.cluster_name,
    }


def _fail(span: trace.Span, error: BaseException) -> None:
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.set_attribute("error.type", type(error).__name__)
    span.record_exception(error)


def traced(
    name: Optional[str] = None,
    attributes: Optional[dict[str, Any]] = None,
) -> Callable:
    """
    Run a service method inside a span.

    When the method's ``self`` holds ``settings``, the span is tagged with
    the project, zone and cluster it acts on.

    Example:
        @traced("deploy")
        def deploy(self, config):
            ...
    """

    def decorator(func: Callable) -> Callable:
        span_name = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            span_attributes = dict(_cluster_attributes(args[0]) if args else {})
            span_attributes.update(attributes or {})
            with get_tracer().start_as_current_span(
                span_name,
                attributes=span_attributes,
                record_exception=False,
                set_status_on_exception=False,
            ) as span:
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _fail(span, e)
                    raise
                span.set_status(Status(StatusCode.OK))
                return result

        return wrapper

    return decorator


@contextmanager
def step_span(operation: str, resource: str, name: str) -> Iterator[trace.Span]:
    """Child span for one resource step, e.g. ``provision.network``."""
    with get_tracer().start_as_current_span(
        f"{operation}.{resource.replace(' ', '_')}",
        attributes={"resource.kind": resource, "resource.name": name},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            _fail(span, e)
            raise
