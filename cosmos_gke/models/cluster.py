"""Cluster-related Pydantic models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

GPU_RESOURCE = "nvidia.com/gpu"
ACCELERATOR_LABEL = "cloud.google.com/gke-accelerator"


class NodeStatus(str, Enum):
    """Node status enumeration."""

    READY = "Ready"
    NOT_READY = "NotReady"
    UNKNOWN = "Unknown"


class PodPhase(str, Enum):
    """Pod phase enumeration."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class ClusterRef(BaseModel):
    """Identity of a GKE cluster: (project, zone, name)."""

    project: str = Field(description="GCP project ID")
    zone: str = Field(description="Cluster zone")
    name: str = Field(description="Cluster name")

    @property
    def location_path(self) -> str:
        return f"projects/{self.project}/locations/{self.zone}"

    @property
    def path(self) -> str:
        return f"{self.location_path}/clusters/{self.name}"

    def node_pool_path(self, pool_name: str) -> str:
        return f"{self.path}/nodePools/{pool_name}"

    def operation_path(self, operation_name: str) -> str:
        return f"{self.location_path}/operations/{operation_name}"

    def __str__(self) -> str:
        return f"{self.project}/{self.zone}/{self.name}"


class ClusterContext(BaseModel):
    """
    Everything needed to talk to a cluster's API server.

    Built from the GKE API instead of relying on the kubectl current-context,
    and passed explicitly to every Kubernetes-facing operation.
    """

    ref: ClusterRef
    endpoint: str = Field(description="API server address (IP or hostname)")
    ca_certificate: str = Field(description="Base64-encoded cluster CA certificate")

    @property
    def host(self) -> str:
        return f"https://{self.endpoint}"


class NodeMetrics(BaseModel):
    """Resource capacity for a node."""

    cpu_allocatable: str = Field(description="Allocatable CPU")
    memory_allocatable: str = Field(description="Allocatable memory")
    ephemeral_storage_allocatable: Optional[str] = Field(
        default=None, description="Allocatable ephemeral storage"
    )
    gpu_allocatable: int = Field(default=0, description="Allocatable nvidia.com/gpu")
    pods_capacity: int = Field(description="Maximum pods")


class NodeInfo(BaseModel):
    """Information about a cluster node."""

    name: str = Field(description="Node name")
    status: NodeStatus = Field(description="Node status")
    accelerator: Optional[str] = Field(
        default=None, description="GKE accelerator label, if any"
    )
    ip_address: str = Field(default="", description="Node internal IP address")
    labels: dict[str, str] = Field(default_factory=dict, description="Node labels")
    taints: list[str] = Field(default_factory=list, description="Node taints")
    metrics: NodeMetrics = Field(description="Resource capacity")

    @property
    def gpu_count(self) -> int:
        return self.metrics.gpu_allocatable


class PodInfo(BaseModel):
    """Information about a pod."""

    name: str = Field(description="Pod name")
    namespace: str = Field(description="Pod namespace")
    phase: PodPhase = Field(description="Pod phase")
    ready: bool = Field(default=False, description="Ready condition is True")
    node_name: Optional[str] = Field(default=None, description="Node running the pod")
    restarts: int = Field(default=0, description="Total container restarts")
    created_at: Optional[datetime] = Field(default=None, description="Pod creation timestamp")


class EventInfo(BaseModel):
    """A namespaced Kubernetes event."""

    type: str
    reason: str
    object_name: str
    message: str
    count: int = 1


class PersistentVolumeInfo(BaseModel):
    """A persistent volume and the claim it was bound to."""

    name: str
    phase: str
    claim_namespace: Optional[str] = None
    claim_name: Optional[str] = None
    capacity: Optional[str] = None
