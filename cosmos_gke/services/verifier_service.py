"""
GPU stack verification.

Checks the NVIDIA driver installer and device plugin daemon sets, lists GPU
nodes and runs a throwaway ``nvidia-smi`` job on one GPU.
"""

import logging
import time
from typing import Callable, Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from ..config import Settings
from ..models.cluster import GPU_RESOURCE, NodeInfo, PodInfo
from ..models.deployments import SmokeTestResult
from ..models.provisioning import VerificationReport
from ..polling import wait_until
from ..telemetry import traced
from .kubernetes_service import KubernetesService

logger = logging.getLogger(__name__)

SYSTEM_NAMESPACE = "kube-system"

DRIVER_INSTALLER_URL = (
    "https://raw.githubusercontent.com/GoogleCloudPlatform/container-engine-accelerators/"
    "master/nvidia-driver-installer/cos/daemonset-preloaded-latest.yaml"
)
DRIVER_INSTALLER_SELECTOR = "k8s-app=nvidia-driver-installer"
DRIVER_READY_TIMEOUT = 300

DEVICE_PLUGIN_URL = (
    "https://raw.githubusercontent.com/kubernetes/kubernetes/master/"
    "cluster/addons/device-plugins/nvidia-gpu/daemonset.yaml"
)
DEVICE_PLUGIN_SELECTOR = "k8s-app=nvidia-gpu-device-plugin"

SMOKE_TEST_JOB = "gpu-smoke-test"
SMOKE_TEST_NAMESPACE = "default"
SMOKE_TEST_IMAGE = "nvidia/cuda:11.8.0-base-ubuntu22.04"
SMOKE_TEST_TIMEOUT = 120

AUTOSCALER_STATUS_CONFIGMAP = "cluster-autoscaler-status"


def smoke_test_job() -> dict:
    """A one-shot job that runs nvidia-smi on a single GPU."""
    job = client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(name=SMOKE_TEST_JOB, namespace=SMOKE_TEST_NAMESPACE),
        spec=client.V1JobSpec(
            backoff_limit=0,
            ttl_seconds_after_finished=300,
            template=client.V1PodTemplateSpec(
                spec=client.V1PodSpec(
                    restart_policy="Never",
                    containers=[
                        client.V1Container(
                            name="cuda-test",
                            image=SMOKE_TEST_IMAGE,
                            command=["nvidia-smi"],
                            resources=client.V1ResourceRequirements(
                                limits={GPU_RESOURCE: "1"},
                            ),
                        )
                    ],
                    tolerations=[
                        client.V1Toleration(
                            key=GPU_RESOURCE, operator="Exists", effect="NoSchedule"
                        )
                    ],
                ),
            ),
        ),
    )
    return client.ApiClient().sanitize_for_serialization(job)


class VerifierService:
    """Service for checking that GPUs are usable from the cluster."""

    def __init__(
        self,
        settings: Settings,
        k8s_service: KubernetesService,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the verifier service."""
        self.settings = settings
        self.k8s = k8s_service
        self._sleep = sleep

    def ensure_driver_installer(self) -> bool:
        """
        Install the driver installer daemon set if needed and wait for it.

        Returns:
            True if every driver pod became Ready within the wait.
        """
        if not self.k8s.daemonsets_present(DRIVER_INSTALLER_SELECTOR, SYSTEM_NAMESPACE):
            logger.info("No NVIDIA driver installer found, installing")
            self.k8s.apply_url(DRIVER_INSTALLER_URL)

        ready = wait_until(
            lambda: self.k8s.pods_ready(SYSTEM_NAMESPACE, DRIVER_INSTALLER_SELECTOR),
            interval=10,
            timeout=DRIVER_READY_TIMEOUT,
            description="NVIDIA driver pods",
            sleep=self._sleep,
        )
        if not ready:
            logger.warning("Some driver pods may not be ready yet, continuing anyway")
            return False
        logger.info("NVIDIA driver pods are ready")
        return True

    def ensure_device_plugin(self) -> list[PodInfo]:
        """Install the device plugin daemon set if needed and list its pods."""
        if not self.k8s.daemonsets_present(DEVICE_PLUGIN_SELECTOR, SYSTEM_NAMESPACE):
            logger.info("No NVIDIA device plugin found, installing")
            self.k8s.apply_url(DEVICE_PLUGIN_URL)

        pods = self.k8s.list_pods(SYSTEM_NAMESPACE, DEVICE_PLUGIN_SELECTOR)
        if not pods:
            logger.warning("NVIDIA device plugin pods not found or not labeled correctly")
        return pods

    def gpu_nodes(self) -> list[NodeInfo]:
        nodes = self.k8s.list_gpu_nodes()
        if not nodes:
            logger.warning("No nodes with GPUs found yet. GPU nodes may still be initializing.")
        return nodes

    def _smoke_test_logs(self) -> str:
        pods = self.k8s.list_pods(SMOKE_TEST_NAMESPACE, f"job-name={SMOKE_TEST_JOB}")
        if not pods:
            return ""
        try:
            return self.k8s.get_pod_logs(pods[0].name, SMOKE_TEST_NAMESPACE)
        except ApiException:
            return ""

    def run_smoke_test(self) -> tuple[SmokeTestResult, str]:
        """Run nvidia-smi in a throwaway job and report its outcome and logs."""
        # A leftover job from an interrupted run keeps its old pod template.
        self.k8s.delete("batch/v1", "Job", SMOKE_TEST_JOB, SMOKE_TEST_NAMESPACE)
        wait_until(
            lambda: self.k8s.pods_gone(SMOKE_TEST_NAMESPACE, f"job-name={SMOKE_TEST_JOB}"),
            interval=2,
            timeout=30,
            description="previous smoke test pods to go away",
            sleep=self._sleep,
        )
        self.k8s.apply(smoke_test_job())

        try:
            status = wait_until(
                lambda: self.k8s.job_status(SMOKE_TEST_JOB, SMOKE_TEST_NAMESPACE),
                interval=5,
                timeout=SMOKE_TEST_TIMEOUT,
                description="GPU smoke test job",
                sleep=self._sleep,
            )
            logs = self._smoke_test_logs()
        finally:
            self.k8s.delete("batch/v1", "Job", SMOKE_TEST_JOB, SMOKE_TEST_NAMESPACE)

        if status is None:
            logger.warning("GPU smoke test did not complete in time")
            return SmokeTestResult.TIMED_OUT, logs
        if status == "failed":
            logger.error("GPU smoke test failed")
            return SmokeTestResult.FAILED, logs
        logger.info("GPU smoke test passed")
        return SmokeTestResult.PASSED, logs

    def autoscaler_status(self) -> Optional[str]:
        data = self.k8s.get_config_map_data(AUTOSCALER_STATUS_CONFIGMAP, SYSTEM_NAMESPACE)
        if data is None:
            logger.warning("Cluster autoscaler status not available")
            return None
        return data.get("status", "")

    @traced("verify")
    def verify(self) -> VerificationReport:
        """Run every check in order; the smoke test needs at least one GPU."""
        self.k8s.check_connection()

        report = VerificationReport(
            driver_ready=self.ensure_driver_installer(),
            device_plugin_pods=self.ensure_device_plugin(),
            gpu_nodes=self.gpu_nodes(),
        )

        if report.gpu_count > 0:
            report.smoke_test, report.smoke_test_logs = self.run_smoke_test()
        else:
            logger.warning("No GPUs available yet, skipping GPU test. Re-run in a few minutes.")
            report.smoke_test = SmokeTestResult.SKIPPED

        report.autoscaler_status = self.autoscaler_status()
        return report
