"""Models describing provisioning and teardown outcomes."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .cluster import NodeInfo, PodInfo
from .deployments import SmokeTestResult


class StepOutcome(str, Enum):
    """What a single existence-checked step did."""

    CREATED = "created"
    EXISTS = "exists"
    DELETED = "deleted"
    MISSING = "missing"
    FAILED = "failed"


class StepResult(BaseModel):
    """Result of one provisioning or teardown step."""

    resource: str = Field(description="Resource kind, e.g. 'network'")
    name: str = Field(description="Resource name")
    outcome: StepOutcome

    def __str__(self) -> str:
        return f"{self.resource} {self.name}: {self.outcome.value}"


class ProvisionReport(BaseModel):
    """Ordered results of a provisioning run."""

    steps: list[StepResult] = Field(default_factory=list)
    gpu_count: int = 0

    @property
    def created(self) -> list[StepResult]:
        return [s for s in self.steps if s.outcome == StepOutcome.CREATED]


class TeardownReport(BaseModel):
    """Ordered results of a cluster teardown run."""

    steps: list[StepResult] = Field(default_factory=list)
    orphaned_disks: list[str] = Field(default_factory=list)


class VerificationReport(BaseModel):
    """Findings of a GPU stack verification run."""

    driver_ready: bool = False
    device_plugin_pods: list[PodInfo] = Field(default_factory=list)
    gpu_nodes: list[NodeInfo] = Field(default_factory=list)
    smoke_test: SmokeTestResult = SmokeTestResult.SKIPPED
    smoke_test_logs: str = ""
    autoscaler_status: Optional[str] = None

    @property
    def gpu_count(self) -> int:
        return sum(node.gpu_count for node in self.gpu_nodes)
