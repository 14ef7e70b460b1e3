"""Deployment-related Pydantic models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings

APP_LABEL = "cosmos"
DEPLOYMENT_NAME = "cosmos-inference"
SERVICE_NAME = "cosmos-service"
SECRET_NAME = "hf-token-secret"
SECRET_KEY = "HF_TOKEN"
CONFIGMAP_NAME = "cosmos-config"
HPA_NAME = "cosmos-hpa"
PDB_NAME = "cosmos-pdb"
MODEL_PVC_NAME = "cosmos-model-storage"
CACHE_PVC_NAME = "cosmos-cache-storage"
PVC_NAMES = (MODEL_PVC_NAME, CACHE_PVC_NAME)


class CosmosDeploymentConfig(BaseModel):
    """Parameters substituted into the Cosmos manifests."""

    model_config = ConfigDict(protected_namespaces=())

    hf_token: str = Field(min_length=1, description="HuggingFace token")
    namespace: str = Field(default="cosmos", description="Target namespace")
    gpu_type: str = Field(default="nvidia-a100-80gb", description="GKE accelerator type")
    model_id: str = Field(
        default="nvidia/Cosmos-1.0-Diffusion-7B-Text2World", description="Model ID"
    )
    image: str = Field(description="Container image")
    model_path: str = Field(default="/models", description="Model volume mount path")
    model_storage: str = Field(default="150Gi", description="Model PVC size")
    cache_storage: str = Field(default="100Gi", description="Cache PVC size")
    replicas: int = Field(default=1, ge=1, description="Number of replicas")
    service_type: str = Field(default="LoadBalancer", description="Service type")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "CosmosDeploymentConfig":
        """Build a config from settings, letting non-None overrides win."""
        values = {
            "hf_token": settings.cosmos.hf_token,
            "namespace": settings.cosmos.namespace,
            "gpu_type": settings.node_pool.gpu_type,
            "model_id": settings.cosmos.model_id,
            "image": settings.cosmos.image,
            "model_path": settings.cosmos.model_path,
            "model_storage": settings.cosmos.model_storage,
            "cache_storage": settings.cosmos.cache_storage,
            "replicas": settings.cosmos.replicas,
            "service_type": settings.cosmos.service_type,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class DeploymentResult(BaseModel):
    """Outcome of a deploy run."""

    namespace: str
    applied: list[str] = Field(default_factory=list, description="kind/name in apply order")
    service_type: str
    external_ip: Optional[str] = None


class UndeployReport(BaseModel):
    """Outcome of an application teardown."""

    namespace: str
    deleted: list[str] = Field(default_factory=list)
    pvcs_preserved: bool = True
    namespace_deleted: bool = False
    orphaned_volumes: list[str] = Field(default_factory=list)


class SmokeTestResult(str, Enum):
    """Outcome of the GPU smoke-test job."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"
