"""cosmos-gke deploy: apply the Cosmos inference workload."""

import argparse
import os

from .. import console
from ..config import Settings
from ..models.deployments import DEPLOYMENT_NAME, SERVICE_NAME, CosmosDeploymentConfig
from ..services.deployment_service import DeploymentService
from .common import (
    add_cluster_arguments,
    add_namespace_argument,
    apply_overrides,
    connect,
    positive_int,
    require_arguments,
    storage_quantity,
)


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "deploy",
        help="Deploy NVIDIA Cosmos to the cluster",
        epilog="Example: cosmos-gke deploy -t YOUR_HF_TOKEN -c cosmos-cluster -z us-central1-a -p my-project",
    )
    parser.add_argument(
        "-t", "--token", default=os.environ.get("HF_TOKEN"), help="HuggingFace token (required)"
    )
    add_cluster_arguments(parser, env_defaults=True)
    add_namespace_argument(parser)
    parser.add_argument("-g", "--gpu-type", help="GPU type (default: nvidia-a100-80gb)")
    parser.add_argument("-m", "--model-id", help="Model ID")
    parser.add_argument("-i", "--image", help="Container image")
    parser.add_argument(
        "-s", "--model-storage", type=storage_quantity, help="Model storage size (default: 150Gi)"
    )
    parser.add_argument(
        "-d", "--cache-storage", type=storage_quantity, help="Cache storage size (default: 100Gi)"
    )
    parser.add_argument("-r", "--replicas", type=positive_int, help="Number of replicas (default: 1)")
    parser.add_argument(
        "--service-type",
        choices=["LoadBalancer", "ClusterIP", "NodePort"],
        help="Service type (default: LoadBalancer)",
    )
    parser.set_defaults(func=run, parser=parser)


def run(args: argparse.Namespace, settings: Settings) -> int:
    require_arguments(args, "token", "cluster", "zone", "project")
    settings = apply_overrides(settings, args)
    config = CosmosDeploymentConfig.from_settings(settings)

    console.banner("NVIDIA Cosmos Deployment")
    print()
    print(f"Cluster:   {settings.gcp.cluster_name} ({settings.gcp.zone}, {settings.gcp.project_id})")
    print(f"Namespace: {config.namespace}")
    print(f"Image:     {config.image}")
    print(f"Model:     {config.model_id}")
    print(f"GPU type:  {config.gpu_type}")
    print(f"Storage:   model {config.model_storage}, cache {config.cache_storage}")
    print(f"Replicas:  {config.replicas}")
    print()

    result = DeploymentService(settings, connect(settings)).deploy(config)

    console.section("Applied")
    console.bullets(result.applied)

    ns = result.namespace
    console.section("Endpoint")
    if result.external_ip:
        print(f"  HTTP: http://{result.external_ip}")
        print(f"  Try it: cosmos-gke predict --url http://{result.external_ip} --prompt 'A robot arm stacking blocks'")
    elif result.service_type == "LoadBalancer":
        print(f"  [WARN] No external address yet. Check: kubectl get svc {SERVICE_NAME} -n {ns}")
    else:
        print(f"  Port-forward: kubectl port-forward -n {ns} svc/{SERVICE_NAME} 8080:80")
        print("  Then use http://localhost:8080")

    console.banner("Cosmos deployment completed!")
    console.next_steps([
        f"Check pod status: kubectl get pods -n {ns}",
        f"Follow logs: kubectl logs -f deployment/{DEPLOYMENT_NAME} -n {ns}",
        f"Describe the deployment: kubectl describe deployment {DEPLOYMENT_NAME} -n {ns}",
        f"Remove it: cosmos-gke undeploy -c {settings.gcp.cluster_name} "
        f"-z {settings.gcp.zone} -p {settings.gcp.project_id}",
    ])
    return 0
