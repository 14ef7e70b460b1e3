"""
Kubernetes manifests for the Cosmos inference workload.

Objects are built with the typed ``kubernetes.client`` models and
serialized to plain dicts, ready for server-side apply.
"""

from typing import Any

import yaml
from kubernetes import client

from .models.cluster import ACCELERATOR_LABEL, GPU_RESOURCE
from .models.deployments import (
    APP_LABEL,
    CACHE_PVC_NAME,
    CONFIGMAP_NAME,
    DEPLOYMENT_NAME,
    HPA_NAME,
    MODEL_PVC_NAME,
    PDB_NAME,
    SECRET_KEY,
    SECRET_NAME,
    SERVICE_NAME,
    CosmosDeploymentConfig,
)

CONTAINER_PORT = 8080
SERVICE_PORT = 80
STORAGE_CLASS = "standard-rwo"
CACHE_MOUNT = "/cache"

INFERENCE_CONFIG: dict[str, Any] = {
    "model": {"name": "cosmos", "version": "latest"},
    "inference": {
        "batch_size": 8,
        "max_sequence_length": 2048,
        "gpu_memory_fraction": 0.9,
        "num_threads": 4,
    },
    "server": {
        "port": CONTAINER_PORT,
        "workers": 1,
        "timeout": 300,
        "max_concurrent_requests": 100,
    },
    "logging": {"level": "INFO", "format": "json"},
}


def _meta(name: str, namespace: str, labels: bool = False) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(
        name=name,
        namespace=namespace,
        labels={"app": APP_LABEL} if labels else None,
    )


def namespace_manifest(config: CosmosDeploymentConfig) -> client.V1Namespace:
    return client.V1Namespace(
        api_version="v1",
        kind="Namespace",
        metadata=client.V1ObjectMeta(name=config.namespace),
    )


def secret_manifest(config: CosmosDeploymentConfig) -> client.V1Secret:
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=_meta(SECRET_NAME, config.namespace),
        string_data={SECRET_KEY: config.hf_token},
    )


def configmap_manifest(config: CosmosDeploymentConfig) -> client.V1ConfigMap:
    return client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_meta(CONFIGMAP_NAME, config.namespace),
        data={"inference.yaml": yaml.safe_dump(INFERENCE_CONFIG, sort_keys=False)},
    )


def pvc_manifest(name: str, size: str, namespace: str) -> client.V1PersistentVolumeClaim:
    return client.V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=_meta(name, namespace),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            storage_class_name=STORAGE_CLASS,
            resources=client.V1VolumeResourceRequirements(
                requests={"storage": size},
            ),
        ),
    )


def _container_env(config: CosmosDeploymentConfig) -> list[client.V1EnvVar]:
    plain = {
        "MODEL_ID": config.model_id,
        "TASK": "text-to-world",
    }
    offload = {
        name: "true"
        for name in (
            "OFFLOAD_NETWORK",
            "OFFLOAD_TOKENIZER",
            "OFFLOAD_TEXT_ENCODER_MODEL",
            "OFFLOAD_GUARDRAIL_MODELS",
            "OFFLOAD_PROMPT_UPSAMPLER",
        )
    }
    directories = {
        "HF_HOME": f"{config.model_path.rstrip('/')}/huggingface",
        "TRANSFORMERS_CACHE": f"{CACHE_MOUNT}/transformers",
        "HUGGINGFACE_HUB_CACHE": f"{CACHE_MOUNT}/hub",
        "TMPDIR": f"{CACHE_MOUNT}/tmp",
        "TEMP": f"{CACHE_MOUNT}/tmp",
        "TMP": f"{CACHE_MOUNT}/tmp",
        "HOME": f"{CACHE_MOUNT}/home",
        "XDG_CACHE_HOME": f"{CACHE_MOUNT}/.cache",
    }
    gpu = {
        "NVIDIA_VISIBLE_DEVICES": "all",
        "NVIDIA_DRIVER_CAPABILITIES": "compute,utility",
        "LD_LIBRARY_PATH": "/usr/local/nvidia/lib64:/usr/local/cuda/lib64",
    }

    env = [client.V1EnvVar(name=k, value=v) for k, v in plain.items()]
    env.append(
        client.V1EnvVar(
            name="HUGGING_FACE_HUB_TOKEN",
            value_from=client.V1EnvVarSource(
                secret_key_ref=client.V1SecretKeySelector(name=SECRET_NAME, key=SECRET_KEY),
            ),
        )
    )
    for values in (offload, directories, gpu):
        env.extend(client.V1EnvVar(name=k, value=v) for k, v in values.items())
    return env


def deployment_manifest(config: CosmosDeploymentConfig) -> client.V1Deployment:
    # Build container spec
    container = client.V1Container(
        name="cosmos",
        image=config.image,
        image_pull_policy="Always",
        ports=[client.V1ContainerPort(container_port=CONTAINER_PORT, name="http", protocol="TCP")],
        env=_container_env(config),
        resources=client.V1ResourceRequirements(
            requests={"cpu": "8", "memory": "32Gi", GPU_RESOURCE: "1"},
            limits={"cpu": "12", "memory": "48Gi", GPU_RESOURCE: "1"},
        ),
        volume_mounts=[
            client.V1VolumeMount(name="model-storage", mount_path=config.model_path),
            client.V1VolumeMount(name="cache-storage", mount_path=CACHE_MOUNT),
            client.V1VolumeMount(name="config", mount_path="/config"),
            client.V1VolumeMount(name="dshm", mount_path="/dev/shm"),
        ],
    )

    volumes = [
        client.V1Volume(
            name="model-storage",
            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                claim_name=MODEL_PVC_NAME
            ),
        ),
        client.V1Volume(
            name="cache-storage",
            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                claim_name=CACHE_PVC_NAME
            ),
        ),
        client.V1Volume(
            name="config",
            config_map=client.V1ConfigMapVolumeSource(name=CONFIGMAP_NAME),
        ),
        client.V1Volume(
            name="dshm",
            empty_dir=client.V1EmptyDirVolumeSource(medium="Memory", size_limit="2Gi"),
        ),
    ]

    # Build pod template
    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels={"app": APP_LABEL}),
        spec=client.V1PodSpec(
            containers=[container],
            node_selector={ACCELERATOR_LABEL: config.gpu_type},
            tolerations=[
                client.V1Toleration(
                    key=GPU_RESOURCE, operator="Equal", value="true", effect="NoSchedule"
                )
            ],
            volumes=volumes,
        ),
    )

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=_meta(DEPLOYMENT_NAME, config.namespace, labels=True),
        spec=client.V1DeploymentSpec(
            replicas=config.replicas,
            selector=client.V1LabelSelector(match_labels={"app": APP_LABEL}),
            template=template,
        ),
    )


def service_manifest(config: CosmosDeploymentConfig) -> client.V1Service:
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=_meta(SERVICE_NAME, config.namespace, labels=True),
        spec=client.V1ServiceSpec(
            type=config.service_type,
            selector={"app": APP_LABEL},
            ports=[
                client.V1ServicePort(
                    name="http",
                    port=SERVICE_PORT,
                    target_port=CONTAINER_PORT,
                    protocol="TCP",
                )
            ],
        ),
    )


def _utilization_metric(resource: str, percent: int) -> client.V2MetricSpec:
    return client.V2MetricSpec(
        type="Resource",
        resource=client.V2ResourceMetricSource(
            name=resource,
            target=client.V2MetricTarget(type="Utilization", average_utilization=percent),
        ),
    )


def _scaling_rules(window: int, percent: int) -> client.V2HPAScalingRules:
    return client.V2HPAScalingRules(
        stabilization_window_seconds=window,
        policies=[client.V2HPAScalingPolicy(type="Percent", value=percent, period_seconds=60)],
    )


def hpa_manifest(config: CosmosDeploymentConfig) -> client.V2HorizontalPodAutoscaler:
    return client.V2HorizontalPodAutoscaler(
        api_version="autoscaling/v2",
        kind="HorizontalPodAutoscaler",
        metadata=_meta(HPA_NAME, config.namespace),
        spec=client.V2HorizontalPodAutoscalerSpec(
            scale_target_ref=client.V2CrossVersionObjectReference(
                api_version="apps/v1", kind="Deployment", name=DEPLOYMENT_NAME
            ),
            min_replicas=1,
            max_replicas=4,
            metrics=[
                _utilization_metric("cpu", 70),
                _utilization_metric("memory", 80),
            ],
            behavior=client.V2HorizontalPodAutoscalerBehavior(
                scale_up=_scaling_rules(120, 100),
                scale_down=_scaling_rules(300, 10),
            ),
        ),
    )


def pdb_manifest(config: CosmosDeploymentConfig) -> client.V1PodDisruptionBudget:
    return client.V1PodDisruptionBudget(
        api_version="policy/v1",
        kind="PodDisruptionBudget",
        metadata=_meta(PDB_NAME, config.namespace),
        spec=client.V1PodDisruptionBudgetSpec(
            min_available=1,
            selector=client.V1LabelSelector(match_labels={"app": APP_LABEL}),
        ),
    )


def render_manifests(config: CosmosDeploymentConfig) -> list[dict[str, Any]]:
    """
    Render the full workload in apply order.

    Namespace, secret, config map, both claims, deployment, service,
    autoscaler, disruption budget.
    """
    objects = [
        namespace_manifest(config),
        secret_manifest(config),
        configmap_manifest(config),
        pvc_manifest(MODEL_PVC_NAME, config.model_storage, config.namespace),
        pvc_manifest(CACHE_PVC_NAME, config.cache_storage, config.namespace),
        deployment_manifest(config),
        service_manifest(config),
        hpa_manifest(config),
        pdb_manifest(config),
    ]
    serializer = client.ApiClient()
    return [serializer.sanitize_for_serialization(obj) for obj in objects]
