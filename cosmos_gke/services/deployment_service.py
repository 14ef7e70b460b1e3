"""
Cosmos deployment management service.

Applies the rendered workload in dependency order, waits for it to become
available and removes it again, optionally keeping the model volumes.
"""

import logging
import time
from typing import Callable, Optional

from ..config import Settings
from ..exceptions import PreconditionError, WaitTimeoutError
from ..manifests import render_manifests
from ..models.deployments import (
    APP_LABEL,
    CONFIGMAP_NAME,
    DEPLOYMENT_NAME,
    HPA_NAME,
    PDB_NAME,
    PVC_NAMES,
    SECRET_NAME,
    SERVICE_NAME,
    CosmosDeploymentConfig,
    DeploymentResult,
    UndeployReport,
)
from ..polling import wait_until
from ..telemetry import traced
from .kubernetes_service import KubernetesService

logger = logging.getLogger(__name__)

AVAILABILITY_INTERVAL = 30
AVAILABILITY_ATTEMPTS = 80
PROGRESS_EVERY = 10

ADDRESS_INTERVAL = 10
ADDRESS_ATTEMPTS = 30

POD_TERMINATION_TIMEOUT = 60
NAMESPACE_DELETION_TIMEOUT = 120

ORPHAN_PHASES = ("Released", "Failed")

# Deletion order for the namespaced objects ahead of the pod wait.
_WORKLOAD_OBJECTS = (
    ("policy/v1", "PodDisruptionBudget", PDB_NAME),
    ("autoscaling/v2", "HorizontalPodAutoscaler", HPA_NAME),
    ("v1", "Service", SERVICE_NAME),
    ("apps/v1", "Deployment", DEPLOYMENT_NAME),
)
_CONFIG_OBJECTS = (
    ("v1", "ConfigMap", CONFIGMAP_NAME),
    ("v1", "Secret", SECRET_NAME),
)


class DeploymentService:
    """Service for deploying and removing the Cosmos inference workload."""

    def __init__(
        self,
        settings: Settings,
        k8s_service: KubernetesService,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the deployment service."""
        self.settings = settings
        self.k8s = k8s_service
        self._sleep = sleep

    @property
    def app_selector(self) -> str:
        return f"app={APP_LABEL}"

    def check_gpu_capacity(self) -> int:
        """Fail unless at least one GPU is allocatable in the cluster."""
        gpu_count = self.k8s.gpu_capacity()
        if gpu_count <= 0:
            raise PreconditionError(
                "No GPUs found in the cluster. Run 'cosmos-gke provision' and 'cosmos-gke verify' first."
            )
        logger.info(f"Found {gpu_count} GPU(s) in the cluster")
        return gpu_count

    def _log_pod_status(self, namespace: str) -> None:
        for pod in self.k8s.list_pods(namespace, self.app_selector):
            logger.info(
                f"  {pod.name}: {pod.phase.value} ready={pod.ready} "
                f"restarts={pod.restarts} node={pod.node_name or '-'}"
            )

    def wait_for_available(self, namespace: str) -> None:
        """
        Block until the deployment reports Available.

        The first rollout downloads the model, which can take 15-30 minutes.

        Raises:
            WaitTimeoutError: The deployment did not become available.
        """
        def progress(attempt: int) -> None:
            if attempt % PROGRESS_EVERY == 0:
                minutes = attempt * AVAILABILITY_INTERVAL // 60
                logger.info(f"Still waiting... ({minutes} minutes elapsed)")
                self._log_pod_status(namespace)

        try:
            wait_until(
                lambda: self.k8s.deployment_available(DEPLOYMENT_NAME, namespace),
                interval=AVAILABILITY_INTERVAL,
                max_attempts=AVAILABILITY_ATTEMPTS,
                description=f"deployment {DEPLOYMENT_NAME} to become available",
                on_attempt=progress,
                raise_on_timeout=True,
                sleep=self._sleep,
            )
        except WaitTimeoutError:
            logger.error(
                f"Check logs with: kubectl logs -f deployment/{DEPLOYMENT_NAME} -n {namespace}"
            )
            raise
        logger.info("Cosmos deployment is available")
        self._log_pod_status(namespace)

    def wait_for_external_address(self, namespace: str) -> Optional[str]:
        """Poll the load balancer address; giving up is not an error."""
        address = wait_until(
            lambda: self.k8s.service_external_address(SERVICE_NAME, namespace),
            interval=ADDRESS_INTERVAL,
            max_attempts=ADDRESS_ATTEMPTS,
            description=f"external address of {SERVICE_NAME}",
            sleep=self._sleep,
        )
        if address is None:
            logger.warning(
                f"LoadBalancer address not assigned yet. Check later with: "
                f"kubectl get svc {SERVICE_NAME} -n {namespace}"
            )
        return address

    @traced("deploy")
    def deploy(self, config: CosmosDeploymentConfig) -> DeploymentResult:
        """
        Apply the workload and wait for it.

        Raises:
            PreconditionError: Cluster unreachable or without GPUs.
            ProvisioningError: An apply call was rejected.
            WaitTimeoutError: The deployment never became available.
        """
        self.k8s.check_connection()
        self.check_gpu_capacity()

        result = DeploymentResult(namespace=config.namespace, service_type=config.service_type)
        for manifest in render_manifests(config):
            self.k8s.apply(manifest)
            result.applied.append(f"{manifest['kind']}/{manifest['metadata']['name']}")

        logger.warning(
            "The container downloads the model on first deployment, which can take 15-30 minutes"
        )
        self.wait_for_available(config.namespace)

        if config.service_type == "LoadBalancer":
            result.external_ip = self.wait_for_external_address(config.namespace)
        return result

    # Teardown

    def inventory(self, namespace: str) -> Optional[dict[str, list[str]]]:
        """Objects in the namespace grouped by kind, or None if it is absent."""
        if not self.k8s.namespace_exists(namespace):
            return None
        return self.k8s.namespace_inventory(namespace)

    def find_orphaned_volumes(self, namespace: str) -> list[str]:
        """Released or failed volumes that were claimed from the namespace."""
        return [
            pv.name
            for pv in self.k8s.list_persistent_volumes()
            if pv.claim_namespace == namespace and pv.phase in ORPHAN_PHASES
        ]

    @traced("undeploy")
    def undeploy(
        self,
        namespace: str,
        delete_pvcs: bool = False,
    ) -> UndeployReport:
        """
        Remove the workload from a namespace.

        Claims are kept unless ``delete_pvcs``; the namespace is only removed
        once no claims remain in it. Released or failed volumes left
        behind are reported, never deleted.
        """
        report = UndeployReport(namespace=namespace, pvcs_preserved=not delete_pvcs)

        for api_version, kind, name in _WORKLOAD_OBJECTS:
            if self.k8s.delete(api_version, kind, name, namespace):
                report.deleted.append(f"{kind}/{name}")

        gone = wait_until(
            lambda: self.k8s.pods_gone(namespace, self.app_selector),
            interval=5,
            timeout=POD_TERMINATION_TIMEOUT,
            description="Cosmos pods to terminate",
            sleep=self._sleep,
        )
        if not gone:
            logger.warning("Some pods are still terminating, continuing anyway")

        for api_version, kind, name in _CONFIG_OBJECTS:
            if self.k8s.delete(api_version, kind, name, namespace):
                report.deleted.append(f"{kind}/{name}")

        if delete_pvcs:
            for name in PVC_NAMES:
                if self.k8s.delete("v1", "PersistentVolumeClaim", name, namespace):
                    report.deleted.append(f"PersistentVolumeClaim/{name}")
        else:
            logger.info("Keeping persistent volume claims (pass --delete-pvcs to remove them)")

        remaining = self.k8s.list_pvc_names(namespace)
        if remaining:
            logger.info(
                f"Namespace {namespace} kept because it still holds claims: {', '.join(remaining)}"
            )
        elif self.k8s.delete_namespace(namespace):
            report.namespace_deleted = True
            deleted = wait_until(
                lambda: not self.k8s.namespace_exists(namespace),
                interval=5,
                timeout=NAMESPACE_DELETION_TIMEOUT,
                description=f"namespace {namespace} deletion",
                sleep=self._sleep,
            )
            if not deleted:
                logger.warning(f"Namespace {namespace} is still terminating")

        report.orphaned_volumes = self.find_orphaned_volumes(namespace)
        if report.orphaned_volumes:
            logger.warning(
                f"Found {len(report.orphaned_volumes)} orphaned persistent volume(s) "
                f"from namespace {namespace}"
            )
        return report
