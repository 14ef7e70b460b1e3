"""Tests for the Kubernetes service's API translation."""

import base64
from unittest.mock import MagicMock

import pytest
from google.auth import exceptions as auth_exceptions
from kubernetes import client
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import NotFoundError, ResourceNotFoundError

from cosmos_gke.exceptions import PreconditionError, ProvisioningError
from cosmos_gke.models.cluster import ClusterContext, ClusterRef, NodeStatus, PodPhase
from cosmos_gke.services import kubernetes_service as kubernetes_service_module
from cosmos_gke.services.kubernetes_service import KubernetesService


@pytest.fixture
def service(settings):
    svc = KubernetesService(settings)
    svc._core_api = MagicMock()
    svc._apps_api = MagicMock()
    svc._batch_api = MagicMock()
    svc._dynamic = MagicMock()
    svc._initialized = True
    return svc


def _node(name, gpus=None, ready="True", accelerator=None):
    allocatable = {"cpu": "11", "memory": "80Gi", "ephemeral-storage": "350Gi", "pods": "110"}
    if gpus is not None:
        allocatable["nvidia.com/gpu"] = str(gpus)
    labels = {"cloud.google.com/gke-accelerator": accelerator} if accelerator else {}
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name, labels=labels),
        spec=client.V1NodeSpec(),
        status=client.V1NodeStatus(
            allocatable=allocatable,
            conditions=[client.V1NodeCondition(type="Ready", status=ready)],
            addresses=[client.V1NodeAddress(type="InternalIP", address="10.0.0.9")],
        ),
    )


def _not_found():
    return ApiException(status=404, reason="Not Found")


def test_no_cluster_selected(settings):
    with pytest.raises(PreconditionError, match="No cluster selected"):
        KubernetesService(settings).check_connection()


def test_list_nodes(service):
    service._core_api.list_node.return_value = client.V1NodeList(
        items=[
            _node("gke-default-pool-1"),
            _node("gke-gpu-pool-1", gpus=1, accelerator="nvidia-a100-80gb"),
            _node("gke-gpu-pool-2", gpus=1, ready="False", accelerator="nvidia-a100-80gb"),
        ]
    )

    nodes = service.list_nodes()

    assert [n.status for n in nodes] == [NodeStatus.READY, NodeStatus.READY, NodeStatus.NOT_READY]
    assert nodes[1].accelerator == "nvidia-a100-80gb"
    assert nodes[1].ip_address == "10.0.0.9"
    assert nodes[1].metrics.ephemeral_storage_allocatable == "350Gi"
    assert service.gpu_capacity() == 2
    assert [n.name for n in service.list_gpu_nodes()] == ["gke-gpu-pool-1", "gke-gpu-pool-2"]


def test_list_pods(service):
    pod = client.V1Pod(
        metadata=client.V1ObjectMeta(name="cosmos-inference-1", namespace="cosmos"),
        spec=client.V1PodSpec(containers=[], node_name="gke-gpu-pool-1"),
        status=client.V1PodStatus(
            phase="Running",
            conditions=[client.V1PodCondition(type="Ready", status="True")],
            container_statuses=[
                client.V1ContainerStatus(
                    name="cosmos", image="img", image_id="", ready=True, restart_count=2
                )
            ],
        ),
    )
    service._core_api.list_namespaced_pod.return_value = client.V1PodList(items=[pod])

    pods = service.list_pods("cosmos", "app=cosmos")

    assert pods[0].phase == PodPhase.RUNNING
    assert pods[0].ready
    assert pods[0].restarts == 2
    assert service.pods_ready("cosmos", "app=cosmos")
    assert not service.pods_gone("cosmos", "app=cosmos")


def test_deployment_available(service):
    service._apps_api.read_namespaced_deployment_status.return_value = client.V1Deployment(
        status=client.V1DeploymentStatus(
            conditions=[client.V1DeploymentCondition(type="Available", status="True")]
        )
    )

    assert service.deployment_available("cosmos-inference", "cosmos")


def test_deployment_missing_is_not_available(service):
    service._apps_api.read_namespaced_deployment_status.side_effect = _not_found()

    assert not service.deployment_available("cosmos-inference", "cosmos")


def test_service_external_address(service):
    service._core_api.read_namespaced_service.return_value = client.V1Service(
        status=client.V1ServiceStatus(
            load_balancer=client.V1LoadBalancerStatus(
                ingress=[client.V1LoadBalancerIngress(ip="34.1.2.3")]
            )
        )
    )

    assert service.service_external_address("cosmos-service", "cosmos") == "34.1.2.3"


def test_pending_external_address(service):
    service._core_api.read_namespaced_service.return_value = client.V1Service(
        status=client.V1ServiceStatus(load_balancer=client.V1LoadBalancerStatus())
    )

    assert service.service_external_address("cosmos-service", "cosmos") is None


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (client.V1JobStatus(succeeded=1), "succeeded"),
        (client.V1JobStatus(failed=1), "failed"),
        (client.V1JobStatus(active=1), None),
    ],
)
def test_job_status(service, status, expected):
    service._batch_api.read_namespaced_job_status.return_value = client.V1Job(status=status)

    assert service.job_status("gpu-smoke-test", "default") == expected


def test_namespace_exists(service):
    service._core_api.read_namespace.side_effect = _not_found()

    assert not service.namespace_exists("cosmos")


def test_namespace_inventory_skips_builtins(service):
    def items(*names, **fields):
        return MagicMock(
            items=[MagicMock(metadata=client.V1ObjectMeta(name=n), **fields) for n in names]
        )

    service._apps_api.list_namespaced_deployment.return_value = items("cosmos-inference")
    service._core_api.list_namespaced_pod.return_value = items()
    service._core_api.list_namespaced_service.return_value = items("cosmos-service")
    service._core_api.list_namespaced_persistent_volume_claim.return_value = items("cosmos-model-storage")
    service._core_api.list_namespaced_config_map.return_value = items("kube-root-ca.crt", "cosmos-config")
    service._core_api.list_namespaced_secret.return_value = items("hf-token-secret", type="Opaque")

    assert service.namespace_inventory("cosmos") == {
        "deployments": ["cosmos-inference"],
        "services": ["cosmos-service"],
        "persistentvolumeclaims": ["cosmos-model-storage"],
        "configmaps": ["cosmos-config"],
        "secrets": ["hf-token-secret"],
    }


def test_list_persistent_volumes(service):
    service._core_api.list_persistent_volume.return_value = client.V1PersistentVolumeList(
        items=[
            client.V1PersistentVolume(
                metadata=client.V1ObjectMeta(name="pvc-123"),
                spec=client.V1PersistentVolumeSpec(
                    capacity={"storage": "150Gi"},
                    claim_ref=client.V1ObjectReference(namespace="cosmos", name="cosmos-model-storage"),
                ),
                status=client.V1PersistentVolumeStatus(phase="Released"),
            )
        ]
    )

    volumes = service.list_persistent_volumes()

    assert volumes[0].claim_namespace == "cosmos"
    assert volumes[0].phase == "Released"
    assert volumes[0].capacity == "150Gi"


def test_delete_missing_persistent_volume(service):
    service._core_api.delete_persistent_volume.side_effect = _not_found()

    assert service.delete_persistent_volume("pvc-123") is False


CONTEXT = ClusterContext(
    ref=ClusterRef(project="test-project", zone="us-central1-a", name="test-cluster"),
    endpoint="34.9.8.7",
    ca_certificate=base64.b64encode(b"-----BEGIN CERTIFICATE-----").decode(),
)

CONFIG_MAP = {
    "apiVersion": "v1",
    "kind": "ConfigMap",
    "metadata": {"name": "cosmos-config", "namespace": "cosmos"},
    "data": {"MODEL_ID": "nvidia/Cosmos-1.0-Diffusion-7B-Text2World"},
}


def test_apply_is_server_side_with_field_manager(service, settings):
    service.apply(CONFIG_MAP)

    service._dynamic.resources.get.assert_called_once_with(api_version="v1", kind="ConfigMap")
    kwargs = service._dynamic.server_side_apply.call_args.kwargs
    assert kwargs["body"] == CONFIG_MAP
    assert kwargs["name"] == "cosmos-config"
    assert kwargs["namespace"] == "cosmos"
    assert kwargs["field_manager"] == settings.kubernetes.field_manager
    assert kwargs["force_conflicts"] is True


def test_apply_rejected(service):
    service._dynamic.server_side_apply.side_effect = ApiException(status=422, reason="Unprocessable Entity")

    with pytest.raises(ProvisioningError, match="ConfigMap/cosmos-config"):
        service.apply(CONFIG_MAP)


def test_apply_unserved_kind(service):
    service._dynamic.resources.get.side_effect = ResourceNotFoundError("No matches found")

    with pytest.raises(ProvisioningError, match="does not serve HorizontalPodAutoscaler"):
        service.apply({
            "apiVersion": "autoscaling/v2",
            "kind": "HorizontalPodAutoscaler",
            "metadata": {"name": "cosmos-hpa", "namespace": "cosmos"},
        })


def test_delete(service):
    assert service.delete("apps/v1", "Deployment", "cosmos-inference", "cosmos") is True

    kwargs = service._dynamic.delete.call_args.kwargs
    assert kwargs["name"] == "cosmos-inference"
    assert kwargs["namespace"] == "cosmos"
    assert kwargs["body"] == {"propagationPolicy": "Background"}


def test_delete_missing_object(service):
    service._dynamic.delete.side_effect = NotFoundError(_not_found())

    assert service.delete("v1", "Secret", "hf-token-secret", "cosmos") is False


def test_delete_failure(service):
    service._dynamic.delete.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ProvisioningError, match="Forbidden"):
        service.delete("v1", "Secret", "hf-token-secret", "cosmos")


def test_missing_credentials_is_precondition_error(settings, monkeypatch):
    def no_credentials(scopes=None):
        raise auth_exceptions.DefaultCredentialsError("Could not automatically determine credentials")

    monkeypatch.setattr("google.auth.default", no_credentials)

    with pytest.raises(PreconditionError, match="No usable Google credentials"):
        KubernetesService(settings, CONTEXT).check_connection()


def test_ca_file_written_once_across_failed_connections(settings, monkeypatch):
    version_api = MagicMock()
    version_api.return_value.get_code.side_effect = ConnectionRefusedError("refused")
    monkeypatch.setattr(kubernetes_service_module.client, "VersionApi", version_api)
    credentials = MagicMock(valid=True, token="ya29.token")
    service = KubernetesService(settings, CONTEXT, credentials=credentials)

    with pytest.raises(PreconditionError, match="not reachable"):
        service.check_connection()
    first = service._ca_file
    with pytest.raises(PreconditionError, match="not reachable"):
        service.check_connection()

    assert service._ca_file == first
    with open(first, "rb") as ca:
        assert ca.read() == b"-----BEGIN CERTIFICATE-----"
