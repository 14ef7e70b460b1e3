"""Shared fixtures: isolated settings and fake cluster objects."""

from unittest.mock import MagicMock

import pytest

from cosmos_gke.config import (
    CosmosSettings,
    GCPSettings,
    Settings,
    get_settings,
)

_ENV_VARS = (
    "GCP_PROJECT_ID",
    "GCP_REGION",
    "GCP_ZONE",
    "CLUSTER_NAME",
    "VPC_NAME",
    "SUBNET_NAME",
    "GPU_TYPE",
    "MACHINE_TYPE",
    "GPU_COUNT",
    "NUM_NODES",
    "MIN_NODES",
    "MAX_NODES",
    "DISK_SIZE",
    "HF_TOKEN",
    "COSMOS_NAMESPACE",
    "MODEL_STORAGE",
    "CACHE_STORAGE",
    "SERVICE_TYPE",
    "K8S_KUBECONFIG_PATH",
    "OTEL_ENABLED",
    "APP_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's environment out of the settings."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gcp=GCPSettings(project_id="test-project", zone="us-central1-a", cluster_name="test-cluster"),
        cosmos=CosmosSettings(hf_token="hf_test"),
    )


@pytest.fixture
def no_sleep():
    return lambda seconds: None


@pytest.fixture
def k8s():
    """A KubernetesService stand-in with a healthy, GPU-equipped cluster."""
    service = MagicMock()
    service.gpu_capacity.return_value = 2
    service.deployment_available.return_value = True
    service.service_external_address.return_value = "34.1.2.3"
    service.pods_gone.return_value = True
    service.pods_ready.return_value = True
    service.namespace_exists.return_value = False
    service.list_pvc_names.return_value = []
    service.list_persistent_volumes.return_value = []
    service.list_pods.return_value = []
    service.delete.return_value = True
    service.delete_namespace.return_value = True
    return service
