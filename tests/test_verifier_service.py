"""Tests for GPU stack verification."""

import pytest

from cosmos_gke.models.deployments import SmokeTestResult
from cosmos_gke.services.verifier_service import (
    DEVICE_PLUGIN_URL,
    DRIVER_INSTALLER_URL,
    SMOKE_TEST_JOB,
    VerifierService,
    smoke_test_job,
)

from .fakes import make_node, make_pod


@pytest.fixture
def verifier(settings, k8s, no_sleep):
    k8s.daemonsets_present.return_value = True
    k8s.list_gpu_nodes.return_value = [make_node(accelerator="nvidia-a100-80gb", gpus=1)]
    k8s.job_status.return_value = "succeeded"
    k8s.get_config_map_data.return_value = {"status": "Cluster-wide: Healthy"}
    return VerifierService(settings, k8s, sleep=no_sleep)


def test_smoke_test_job_shape():
    job = smoke_test_job()
    pod_spec = job["spec"]["template"]["spec"]

    assert job["kind"] == "Job"
    assert job["metadata"]["name"] == SMOKE_TEST_JOB
    assert job["spec"]["backoffLimit"] == 0
    assert pod_spec["restartPolicy"] == "Never"
    assert pod_spec["containers"][0]["command"] == ["nvidia-smi"]
    assert pod_spec["containers"][0]["resources"]["limits"] == {"nvidia.com/gpu": "1"}


def test_installs_missing_daemonsets(verifier, k8s):
    k8s.daemonsets_present.return_value = False

    verifier.ensure_driver_installer()
    verifier.ensure_device_plugin()

    k8s.apply_url.assert_any_call(DRIVER_INSTALLER_URL)
    k8s.apply_url.assert_any_call(DEVICE_PLUGIN_URL)


def test_existing_daemonsets_not_reinstalled(verifier, k8s):
    verifier.ensure_driver_installer()

    k8s.apply_url.assert_not_called()


def test_driver_wait_is_advisory(verifier, k8s):
    k8s.pods_ready.return_value = False

    assert verifier.ensure_driver_installer() is False
    assert k8s.pods_ready.call_count == 30


def test_verify_passes(verifier, k8s):
    k8s.list_pods.return_value = [make_pod(name="gpu-smoke-test-x", namespace="default")]
    k8s.get_pod_logs.return_value = "NVIDIA-SMI 535.104"

    report = verifier.verify()

    assert report.driver_ready
    assert report.gpu_count == 1
    assert report.smoke_test == SmokeTestResult.PASSED
    assert "NVIDIA-SMI" in report.smoke_test_logs
    assert report.autoscaler_status == "Cluster-wide: Healthy"


def test_smoke_test_job_always_cleaned_up(verifier, k8s):
    k8s.job_status.return_value = "failed"

    result, _ = verifier.run_smoke_test()

    assert result == SmokeTestResult.FAILED
    job_deletes = [c for c in k8s.delete.call_args_list if c.args[1] == "Job"]
    assert len(job_deletes) == 2


def test_smoke_test_timeout(verifier, k8s):
    k8s.job_status.return_value = None

    result, _ = verifier.run_smoke_test()

    assert result == SmokeTestResult.TIMED_OUT


def test_no_gpus_skips_smoke_test(verifier, k8s):
    k8s.list_gpu_nodes.return_value = []

    report = verifier.verify()

    assert report.smoke_test == SmokeTestResult.SKIPPED
    k8s.apply.assert_not_called()


def test_missing_autoscaler_status(verifier, k8s):
    k8s.get_config_map_data.return_value = None

    assert verifier.autoscaler_status() is None
