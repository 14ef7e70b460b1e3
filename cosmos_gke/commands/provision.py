"""cosmos-gke provision: create the VPC, cluster and GPU node pool."""

import argparse

from .. import console
from ..config import Settings
from ..services.provisioner_service import ProvisionerService
from .common import (
    add_cluster_arguments,
    apply_overrides,
    gcp_for,
    non_negative_int,
    positive_int,
)


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "provision",
        help="Create the GKE cluster and GPU node pool",
        description="Create the VPC, subnet, firewall rules, GKE cluster and GPU node pool. "
        "Existing resources are skipped.",
    )
    add_cluster_arguments(parser)
    parser.add_argument("--region", help="Region for the subnet")
    parser.add_argument("--gpu-type", help="GPU accelerator type")
    parser.add_argument("--machine-type", help="GPU node machine type")
    parser.add_argument("--gpu-count", type=positive_int, help="GPUs per node")
    parser.add_argument("--num-nodes", type=non_negative_int, help="Initial GPU nodes")
    parser.add_argument("--min-nodes", type=non_negative_int, help="Autoscaling minimum")
    parser.add_argument("--max-nodes", type=positive_int, help="Autoscaling maximum")
    parser.add_argument("--disk-size", type=positive_int, help="GPU node boot disk size in GB")
    parser.set_defaults(func=run, parser=parser)


def run(args: argparse.Namespace, settings: Settings) -> int:
    settings = apply_overrides(settings, args)
    pool = settings.node_pool

    console.banner("GKE Cluster Provisioning for NVIDIA Cosmos")
    print()
    print(f"Project:   {settings.gcp.project_id}")
    print(f"Cluster:   {settings.gcp.cluster_name} ({settings.gcp.zone})")
    print(f"Network:   {settings.network.vpc_name} / {settings.network.subnet_name}")
    print(f"GPU pool:  {pool.num_nodes} x {pool.machine_type} with {pool.gpu_count} x {pool.gpu_type}")
    print(f"Autoscale: {pool.min_nodes}-{pool.max_nodes} nodes")
    print()

    service = ProvisionerService(settings, gcp_for(settings))
    report = service.provision()

    console.section("Resources")
    for result in report.steps:
        console.step(result)

    print()
    if report.gpu_count:
        print(f"[OK] GPUs available in cluster: {report.gpu_count}")
    else:
        print("[WARN] No GPUs detected yet. They may still be initializing.")

    console.banner("GKE cluster setup completed!")
    console.next_steps([
        f"Verify GPUs: cosmos-gke verify -c {settings.gcp.cluster_name} "
        f"-z {settings.gcp.zone} -p {settings.gcp.project_id}",
        f"Deploy Cosmos: cosmos-gke deploy -t YOUR_HF_TOKEN -c {settings.gcp.cluster_name} "
        f"-z {settings.gcp.zone} -p {settings.gcp.project_id}",
        "Check nodes: cosmos-gke status",
    ])
    return 0
