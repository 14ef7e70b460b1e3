"""Tests for deploying and undeploying the Cosmos workload."""

from unittest.mock import call

import pytest

from cosmos_gke.exceptions import PreconditionError, WaitTimeoutError
from cosmos_gke.models.cluster import PersistentVolumeInfo
from cosmos_gke.models.deployments import CosmosDeploymentConfig
from cosmos_gke.services.deployment_service import DeploymentService


@pytest.fixture
def config(settings):
    return CosmosDeploymentConfig.from_settings(settings)


@pytest.fixture
def service(settings, k8s, no_sleep):
    return DeploymentService(settings, k8s, sleep=no_sleep)


class TestDeploy:
    def test_applies_in_order_and_reports_address(self, service, k8s, config):
        result = service.deploy(config)

        k8s.check_connection.assert_called_once()
        assert [c.args[0]["kind"] for c in k8s.apply.call_args_list] == [
            "Namespace",
            "Secret",
            "ConfigMap",
            "PersistentVolumeClaim",
            "PersistentVolumeClaim",
            "Deployment",
            "Service",
            "HorizontalPodAutoscaler",
            "PodDisruptionBudget",
        ]
        assert result.applied[0] == "Namespace/cosmos"
        assert result.applied[-1] == "PodDisruptionBudget/cosmos-pdb"
        assert result.external_ip == "34.1.2.3"

    def test_no_gpus_fails_before_applying(self, service, k8s, config):
        k8s.gpu_capacity.return_value = 0

        with pytest.raises(PreconditionError):
            service.deploy(config)
        k8s.apply.assert_not_called()

    def test_availability_timeout_is_fatal(self, service, k8s, config):
        k8s.deployment_available.return_value = False

        with pytest.raises(WaitTimeoutError):
            service.deploy(config)
        assert k8s.deployment_available.call_count == 80
        k8s.service_external_address.assert_not_called()

    def test_missing_address_is_not_fatal(self, service, k8s, config):
        k8s.service_external_address.return_value = None

        result = service.deploy(config)

        assert result.external_ip is None
        assert k8s.service_external_address.call_count == 30

    def test_cluster_ip_skips_address_wait(self, service, k8s, settings):
        config = CosmosDeploymentConfig.from_settings(settings, service_type="ClusterIP")

        result = service.deploy(config)

        assert result.external_ip is None
        k8s.service_external_address.assert_not_called()

    def test_overrides_reach_manifests(self, service, k8s, settings):
        config = CosmosDeploymentConfig.from_settings(
            settings, gpu_type="nvidia-h100-80gb", model_storage="200Gi"
        )

        service.deploy(config)

        applied = {c.args[0]["metadata"]["name"]: c.args[0] for c in k8s.apply.call_args_list}
        pod_spec = applied["cosmos-inference"]["spec"]["template"]["spec"]
        assert pod_spec["nodeSelector"]["cloud.google.com/gke-accelerator"] == "nvidia-h100-80gb"
        assert applied["cosmos-model-storage"]["spec"]["resources"]["requests"]["storage"] == "200Gi"


class TestUndeploy:
    def test_keeps_claims_and_namespace_by_default(self, service, k8s):
        k8s.list_pvc_names.return_value = ["cosmos-model-storage", "cosmos-cache-storage"]

        report = service.undeploy("cosmos")

        deleted_kinds = [c.args[1] for c in k8s.delete.call_args_list]
        assert deleted_kinds == [
            "PodDisruptionBudget",
            "HorizontalPodAutoscaler",
            "Service",
            "Deployment",
            "ConfigMap",
            "Secret",
        ]
        assert report.pvcs_preserved
        assert not report.namespace_deleted
        k8s.delete_namespace.assert_not_called()

    def test_delete_pvcs_removes_namespace(self, service, k8s):
        report = service.undeploy("cosmos", delete_pvcs=True)

        assert call("v1", "PersistentVolumeClaim", "cosmos-model-storage", "cosmos") in k8s.delete.call_args_list
        assert call("v1", "PersistentVolumeClaim", "cosmos-cache-storage", "cosmos") in k8s.delete.call_args_list
        k8s.delete_namespace.assert_called_once_with("cosmos")
        assert report.namespace_deleted
        assert "PersistentVolumeClaim/cosmos-model-storage" in report.deleted

    def test_namespace_already_gone_not_reported(self, service, k8s):
        k8s.delete_namespace.return_value = False

        report = service.undeploy("cosmos", delete_pvcs=True)

        assert not report.namespace_deleted
        k8s.namespace_exists.assert_not_called()

    def test_missing_objects_not_reported(self, service, k8s):
        k8s.delete.return_value = False

        report = service.undeploy("cosmos")

        assert report.deleted == []

    def test_reports_orphaned_volumes(self, service, k8s):
        k8s.list_persistent_volumes.return_value = [
            PersistentVolumeInfo(name="pvc-1", phase="Released", claim_namespace="cosmos"),
            PersistentVolumeInfo(name="pvc-2", phase="Bound", claim_namespace="cosmos"),
            PersistentVolumeInfo(name="pvc-3", phase="Failed", claim_namespace="other"),
        ]

        report = service.undeploy("cosmos", delete_pvcs=True)

        assert report.orphaned_volumes == ["pvc-1"]
        k8s.delete_persistent_volume.assert_not_called()

    def test_stuck_pods_do_not_abort(self, service, k8s):
        k8s.pods_gone.return_value = False

        report = service.undeploy("cosmos", delete_pvcs=True)

        assert report.namespace_deleted


def test_inventory_absent_namespace(service, k8s):
    assert service.inventory("cosmos") is None


def test_inventory(service, k8s):
    k8s.namespace_exists.return_value = True
    k8s.namespace_inventory.return_value = {"Deployment": ["cosmos-inference"]}

    assert service.inventory("cosmos") == {"Deployment": ["cosmos-inference"]}
