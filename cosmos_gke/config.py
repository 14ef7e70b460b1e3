"""
Configuration management using Pydantic Settings.

Environment variables can override all settings. The variable names are the
ones the shell provisioning scripts read (GCP_PROJECT_ID, GPU_TYPE, ...).
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import PreconditionError

PLACEHOLDER_PROJECT_ID = "your-project-id"


def _env(name: str, env_var: str) -> AliasChoices:
    """Accept either the field name or the legacy script variable."""
    return AliasChoices(name, env_var)


class GCPSettings(BaseSettings):
    """Google Cloud project and cluster location."""

    model_config = SettingsConfigDict(extra="ignore")

    project_id: str = Field(
        default=PLACEHOLDER_PROJECT_ID,
        validation_alias=_env("project_id", "GCP_PROJECT_ID"),
        description="GCP project that owns the cluster.",
    )
    region: str = Field(
        default="us-central1",
        validation_alias=_env("region", "GCP_REGION"),
        description="Region for the subnet.",
    )
    zone: str = Field(
        default="us-central1-a",
        validation_alias=_env("zone", "GCP_ZONE"),
        description="Zone for the cluster and node pools.",
    )
    cluster_name: str = Field(
        default="cosmos-gpu-cluster",
        validation_alias=_env("cluster_name", "CLUSTER_NAME"),
        description="GKE cluster name.",
    )

    def require_project(self) -> str:
        """Return the project id, rejecting the unset placeholder."""
        if not self.project_id or self.project_id == PLACEHOLDER_PROJECT_ID:
            raise PreconditionError(
                "GCP project is not set. Export GCP_PROJECT_ID or pass --project."
            )
        return self.project_id


class NetworkSettings(BaseSettings):
    """VPC layout for the cluster."""

    model_config = SettingsConfigDict(extra="ignore")

    vpc_name: str = Field(default="cosmos-vpc", validation_alias=_env("vpc_name", "VPC_NAME"))
    subnet_name: str = Field(
        default="cosmos-subnet", validation_alias=_env("subnet_name", "SUBNET_NAME")
    )
    subnet_range: str = Field(
        default="10.0.0.0/24", validation_alias=_env("subnet_range", "SUBNET_RANGE")
    )
    pods_range: str = Field(
        default="10.1.0.0/16", validation_alias=_env("pods_range", "PODS_RANGE")
    )
    services_range: str = Field(
        default="10.2.0.0/16", validation_alias=_env("services_range", "SERVICES_RANGE")
    )

    @property
    def internal_ranges(self) -> list[str]:
        return [self.subnet_range, self.pods_range, self.services_range]


class NodePoolSettings(BaseSettings):
    """GPU node pool sizing."""

    model_config = SettingsConfigDict(extra="ignore")

    pool_name: str = Field(default="gpu-pool", description="GPU node pool name")
    gpu_type: str = Field(
        default="nvidia-a100-80gb", validation_alias=_env("gpu_type", "GPU_TYPE")
    )
    machine_type: str = Field(
        default="a2-ultragpu-1g", validation_alias=_env("machine_type", "MACHINE_TYPE")
    )
    gpu_count: int = Field(default=1, ge=1, validation_alias=_env("gpu_count", "GPU_COUNT"))
    num_nodes: int = Field(default=2, ge=0, validation_alias=_env("num_nodes", "NUM_NODES"))
    min_nodes: int = Field(default=1, ge=0, validation_alias=_env("min_nodes", "MIN_NODES"))
    max_nodes: int = Field(default=4, ge=1, validation_alias=_env("max_nodes", "MAX_NODES"))
    disk_size: int = Field(
        default=400,
        ge=10,
        validation_alias=_env("disk_size", "DISK_SIZE"),
        description="Boot disk size in GB",
    )


class CosmosSettings(BaseSettings):
    """Cosmos application deployment settings."""

    model_config = SettingsConfigDict(extra="ignore", protected_namespaces=())

    namespace: str = Field(
        default="cosmos", validation_alias=_env("namespace", "COSMOS_NAMESPACE")
    )
    image: str = Field(
        default=(
            "us-docker.pkg.dev/vertex-ai/vertex-vision-model-garden-dockers/"
            "pytorch-cosmos:20250314"
        ),
        validation_alias=_env("image", "COSMOS_IMAGE"),
    )
    service_type: str = Field(
        default="LoadBalancer", validation_alias=_env("service_type", "SERVICE_TYPE")
    )
    replicas: int = Field(default=1, ge=1, validation_alias=_env("replicas", "REPLICAS"))
    hf_token: Optional[str] = Field(
        default=None,
        validation_alias=_env("hf_token", "HF_TOKEN"),
        description="HuggingFace token used to download the model.",
    )
    model_id: str = Field(
        default="nvidia/Cosmos-1.0-Diffusion-7B-Text2World",
        validation_alias=_env("model_id", "HF_MODEL_ID"),
    )
    model_path: str = Field(default="/models", validation_alias=_env("model_path", "MODEL_PATH"))
    model_storage: str = Field(
        default="150Gi", validation_alias=_env("model_storage", "MODEL_STORAGE")
    )
    cache_storage: str = Field(
        default="100Gi", validation_alias=_env("cache_storage", "CACHE_STORAGE")
    )


class KubernetesSettings(BaseSettings):
    """Kubernetes connection settings."""

    model_config = SettingsConfigDict(env_prefix="K8S_")

    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file. If None, credentials are derived from GKE.",
    )
    context: Optional[str] = Field(
        default=None,
        description="Kubernetes context to use with kubeconfig_path.",
    )
    field_manager: str = Field(
        default="cosmos-gke",
        description="Field manager name used for server-side apply.",
    )


class TelemetrySettings(BaseSettings):
    """OpenTelemetry settings."""

    model_config = SettingsConfigDict(env_prefix="OTEL_")

    enabled: bool = Field(default=False, description="Enable OpenTelemetry tracing")
    service_name: str = Field(default="cosmos-gke", description="Service name for traces")
    exporter_endpoint: str = Field(
        default="http://localhost:4317",
        description="OTLP exporter endpoint",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Nested settings
    gcp: GCPSettings = Field(default_factory=GCPSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    node_pool: NodePoolSettings = Field(default_factory=NodePoolSettings)
    cosmos: CosmosSettings = Field(default_factory=CosmosSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


_VARIABLE_GROUPS = ("gcp", "network", "node_pool", "cosmos")


def load_variables_file(path: Path, base: Optional[Settings] = None) -> Settings:
    """
    Overlay a YAML variables file onto the settings.

    Keys are setting field names (``project_id``, ``zone``, ``gpu_type``...).
    ``project_id`` must be present. Unknown keys are rejected.
    """
    if not path.exists():
        raise PreconditionError(
            f"{path} not found. Copy infra.yaml.example and configure it."
        )
    variables: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
    if not variables.get("project_id"):
        raise PreconditionError(f"{path} must define project_id")

    settings = base or get_settings()
    overrides: dict[str, dict[str, Any]] = {group: {} for group in _VARIABLE_GROUPS}
    for key, value in variables.items():
        for group in _VARIABLE_GROUPS:
            if key in type(getattr(settings, group)).model_fields:
                overrides[group][key] = value
                break
        else:
            raise PreconditionError(f"Unknown variable '{key}' in {path}")

    updated = {
        group: type(getattr(settings, group))(
            **{**getattr(settings, group).model_dump(), **values}
        )
        for group, values in overrides.items()
        if values
    }
    return settings.model_copy(update=updated)
