"""cosmos-gke teardown: delete the cluster, its network and the application."""

import argparse

from .. import console
from ..config import Settings
from ..services.teardown_service import TeardownService
from .common import add_cluster_arguments, apply_overrides, gcp_for


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "teardown",
        help="Delete the GKE cluster, VPC and everything on them",
    )
    add_cluster_arguments(parser)
    add_cluster_network_arguments(parser)
    parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    parser.set_defaults(func=run, parser=parser)


def add_cluster_network_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--region", help="Region of the subnet")
    parser.add_argument("--vpc", help="VPC network name")
    parser.add_argument("--subnet", help="Subnet name")
    parser.add_argument("-n", "--namespace", help="Application namespace (default: cosmos)")


def run(args: argparse.Namespace, settings: Settings) -> int:
    settings = apply_overrides(settings, args)
    settings.gcp.require_project()
    service = TeardownService(settings, gcp_for(settings))

    console.banner("GKE Cluster Cleanup")
    print("\n[WARN] This will delete the following resources:")
    console.bullets(service.describe())
    print()
    if not args.force and not console.confirm("Are you sure you want to proceed?"):
        print("Cleanup cancelled.")
        return 0

    report = service.teardown()

    console.section("Results")
    for result in report.steps:
        console.step(result)

    if report.orphaned_disks:
        print("\n[WARN] Potentially orphaned disks. Review and delete manually if needed:")
        for name in report.orphaned_disks:
            print(f"  gcloud compute disks delete {name} --zone {settings.gcp.zone}")

    print("\nCleanup completed!")
    print("Note: Some resources like Load Balancer IPs may take a few minutes to be fully released.")
    return 0
