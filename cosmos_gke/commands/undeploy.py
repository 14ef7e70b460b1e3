"""cosmos-gke undeploy: remove the Cosmos workload from its namespace."""

import argparse

from .. import console
from ..config import Settings
from ..services.deployment_service import DeploymentService
from .common import (
    add_cluster_arguments,
    add_namespace_argument,
    apply_overrides,
    connect,
    require_arguments,
)


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "undeploy",
        help="Remove the Cosmos deployment",
        description="Remove the Cosmos workload. Persistent volume claims are kept unless --delete-pvcs is given.",
    )
    add_cluster_arguments(parser, env_defaults=True)
    add_namespace_argument(parser)
    parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    parser.add_argument(
        "--delete-pvcs",
        action="store_true",
        help="Also delete the model and cache volume claims (downloaded models are lost)",
    )
    parser.set_defaults(func=run, parser=parser)


def run(args: argparse.Namespace, settings: Settings) -> int:
    require_arguments(args, "cluster", "zone", "project")
    settings = apply_overrides(settings, args)
    namespace = settings.cosmos.namespace

    console.banner("NVIDIA Cosmos Cleanup")
    service = DeploymentService(settings, connect(settings))
    service.k8s.check_connection()

    inventory = service.inventory(namespace)
    if inventory is None:
        print(f"\nNamespace {namespace} does not exist. Nothing to clean up.")
        return 0

    print(f"\nResources in namespace {namespace}:")
    for kind, names in inventory.items():
        print(f"  {kind}:")
        console.bullets(names, indent="    - ")
    if args.delete_pvcs:
        print("\n[WARN] --delete-pvcs: downloaded models and caches will be deleted")
    else:
        print("\nPersistent volume claims will be kept.")

    if not args.force and not console.confirm(
        f"\nDelete the Cosmos deployment from namespace {namespace}?"
    ):
        print("Cleanup cancelled.")
        return 0

    report = service.undeploy(namespace, delete_pvcs=args.delete_pvcs)

    console.section("Deleted")
    console.bullets(report.deleted or ["nothing"])
    if report.namespace_deleted:
        print(f"  - Namespace/{namespace}")
    elif report.pvcs_preserved:
        print(f"\nNamespace {namespace} kept with its volume claims. Re-deploying reuses the downloaded model.")

    if report.orphaned_volumes:
        print("\n[WARN] Orphaned persistent volumes (review, then delete manually):")
        for name in report.orphaned_volumes:
            print(f"  kubectl delete pv {name}")

    print("\nCleanup completed!")
    return 0
