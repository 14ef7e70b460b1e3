"""Pydantic models shared by the services and commands."""

from .cluster import (
    ClusterContext,
    ClusterRef,
    EventInfo,
    NodeInfo,
    NodeMetrics,
    PersistentVolumeInfo,
    PodInfo,
)
from .deployments import (
    CosmosDeploymentConfig,
    DeploymentResult,
    SmokeTestResult,
    UndeployReport,
)
from .provisioning import (
    ProvisionReport,
    StepOutcome,
    StepResult,
    TeardownReport,
    VerificationReport,
)

__all__ = [
    "ClusterContext",
    "ClusterRef",
    "EventInfo",
    "NodeInfo",
    "NodeMetrics",
    "PersistentVolumeInfo",
    "PodInfo",
    "CosmosDeploymentConfig",
    "DeploymentResult",
    "SmokeTestResult",
    "UndeployReport",
    "ProvisionReport",
    "StepOutcome",
    "StepResult",
    "TeardownReport",
    "VerificationReport",
]
