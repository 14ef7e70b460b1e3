"""Tests for run tracing."""

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from cosmos_gke.telemetry import tracing


@pytest.fixture
def spans(monkeypatch):
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "get_tracer", lambda: provider.get_tracer("test"))
    return exporter


class Deployer:
    def __init__(self, settings):
        self.settings = settings

    @tracing.traced("deploy", {"cosmos.namespace": "cosmos"})
    def deploy(self, fail=False):
        with tracing.step_span("deploy", "persistent volume claim", "cosmos-model-storage"):
            if fail:
                raise RuntimeError("apply rejected")
        return "ok"


def test_traced_tags_cluster(spans, settings):
    assert Deployer(settings).deploy() == "ok"

    finished = {span.name: span for span in spans.get_finished_spans()}
    root = finished["deploy"]
    assert root.attributes["k8s.cluster.name"] == "test-cluster"
    assert root.attributes["gcp.project_id"] == "test-project"
    assert root.attributes["cosmos.namespace"] == "cosmos"
    assert root.status.status_code == StatusCode.OK
    step = finished["deploy.persistent_volume_claim"]
    assert step.attributes["resource.name"] == "cosmos-model-storage"
    assert step.parent.span_id == root.context.span_id


def test_traced_records_errors(spans, settings):
    with pytest.raises(RuntimeError):
        Deployer(settings).deploy(fail=True)

    for span in spans.get_finished_spans():
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["error.type"] == "RuntimeError"
