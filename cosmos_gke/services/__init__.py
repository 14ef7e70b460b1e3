"""Service layer for provisioning, deployment and teardown."""

from .kubernetes_service import KubernetesService
from .gcp_service import GCPService
from .deployment_service import DeploymentService
from .verifier_service import VerifierService
from .provisioner_service import ProvisionerService
from .teardown_service import TeardownService
from .inference_client import InferenceClient

__all__ = [
    "KubernetesService",
    "GCPService",
    "DeploymentService",
    "VerifierService",
    "ProvisionerService",
    "TeardownService",
    "InferenceClient",
]
