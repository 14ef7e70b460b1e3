"""Tests for the rendered Cosmos workload."""

import yaml

from cosmos_gke.manifests import render_manifests
from cosmos_gke.models.cluster import ACCELERATOR_LABEL, GPU_RESOURCE
from cosmos_gke.models.deployments import CosmosDeploymentConfig

IMAGE = "us-docker.pkg.dev/example/cosmos:latest"


def _config(**overrides) -> CosmosDeploymentConfig:
    values = {"hf_token": "hf_secret", "image": IMAGE}
    values.update(overrides)
    return CosmosDeploymentConfig(**values)


def _by_kind(manifests, kind):
    return [m for m in manifests if m["kind"] == kind]


def test_apply_order():
    kinds = [m["kind"] for m in render_manifests(_config())]

    assert kinds == [
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


def test_namespace_applied_everywhere():
    manifests = render_manifests(_config(namespace="video"))

    assert manifests[0]["metadata"]["name"] == "video"
    assert all(m["metadata"]["namespace"] == "video" for m in manifests[1:])


def test_gpu_type_substituted():
    manifests = render_manifests(_config(gpu_type="nvidia-h100-80gb"))
    pod_spec = _by_kind(manifests, "Deployment")[0]["spec"]["template"]["spec"]

    assert pod_spec["nodeSelector"] == {ACCELERATOR_LABEL: "nvidia-h100-80gb"}
    assert "nvidia-a100-80gb" not in yaml.safe_dump(manifests)


def test_storage_sizes_substituted():
    manifests = render_manifests(_config(model_storage="200Gi", cache_storage="50Gi"))
    sizes = {
        m["metadata"]["name"]: m["spec"]["resources"]["requests"]["storage"]
        for m in _by_kind(manifests, "PersistentVolumeClaim")
    }

    assert sizes == {"cosmos-model-storage": "200Gi", "cosmos-cache-storage": "50Gi"}


def test_token_only_in_secret():
    manifests = render_manifests(_config(hf_token="hf_very_secret"))
    secret = _by_kind(manifests, "Secret")[0]

    assert secret["stringData"] == {"HF_TOKEN": "hf_very_secret"}
    others = [m for m in manifests if m["kind"] != "Secret"]
    assert "hf_very_secret" not in yaml.safe_dump(others)


def test_container_requests_one_gpu():
    deployment = _by_kind(render_manifests(_config(replicas=2)), "Deployment")[0]
    container = deployment["spec"]["template"]["spec"]["containers"][0]

    assert deployment["spec"]["replicas"] == 2
    assert container["image"] == IMAGE
    assert container["resources"]["limits"][GPU_RESOURCE] == "1"
    assert container["resources"]["requests"][GPU_RESOURCE] == "1"
    token_env = next(e for e in container["env"] if e["name"] == "HUGGING_FACE_HUB_TOKEN")
    assert token_env["valueFrom"]["secretKeyRef"] == {"name": "hf-token-secret", "key": "HF_TOKEN"}


def test_service_type():
    service = _by_kind(render_manifests(_config(service_type="ClusterIP")), "Service")[0]

    assert service["spec"]["type"] == "ClusterIP"
    assert service["spec"]["ports"][0]["port"] == 80
    assert service["spec"]["ports"][0]["targetPort"] == 8080


def test_autoscaler_targets_deployment():
    hpa = _by_kind(render_manifests(_config()), "HorizontalPodAutoscaler")[0]

    assert hpa["apiVersion"] == "autoscaling/v2"
    assert hpa["spec"]["scaleTargetRef"]["name"] == "cosmos-inference"
    assert hpa["spec"]["maxReplicas"] == 4
