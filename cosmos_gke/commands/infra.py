"""cosmos-gke infra: declarative provisioning with a persisted state."""

import argparse
from pathlib import Path

from .. import console
from ..config import Settings, load_variables_file
from ..infra import InfraStack


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "infra",
        help="Plan, apply or destroy the cluster declaratively",
    )
    parser.add_argument(
        "--vars",
        type=Path,
        default=Path("infra.yaml"),
        help="Variables file (default: infra.yaml)",
    )
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=Path(".cosmos-gke/state"),
        help="Directory holding the stack state (default: .cosmos-gke/state)",
    )
    parser.add_argument("--stack", help="Stack name (default: the cluster name)")

    actions = parser.add_subparsers(dest="action", required=True)
    actions.add_parser("preview", help="Show the planned changes")
    actions.add_parser("up", help="Create or update the infrastructure")
    actions.add_parser("outputs", help="Print stack outputs")
    destroy = actions.add_parser("destroy", help="Destroy the infrastructure")
    destroy.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompts")
    parser.set_defaults(func=run, parser=parser)


def _confirm(question: str) -> bool:
    return console.confirm(question, accept=("y", "yes"))


def run(args: argparse.Namespace, settings: Settings) -> int:
    settings = load_variables_file(args.vars, settings)
    stack = InfraStack(settings, args.state_dir, args.stack)

    if args.action == "preview":
        summary = stack.preview()
        print("\nPlanned changes: " + (", ".join(f"{op}={n}" for op, n in summary.items()) or "none"))
        return 0

    if args.action == "outputs":
        for key, value in stack.outputs().items():
            print(f"{key:<18} {value}")
        return 0

    if args.action == "up":
        console.banner("Deploying GKE infrastructure")
        print("This will create the VPC, GKE cluster and GPU node pool.\n")
        outputs = stack.up()
        gpu_nodes = stack.wait_for_cluster()

        console.section("GPU nodes")
        for node in gpu_nodes:
            print(f"  {node.name}: {node.accelerator} ({node.status.value})")
        if not gpu_nodes:
            print("  [WARN] none ready yet")

        cluster = outputs.get("cluster_name", settings.gcp.cluster_name)
        console.banner("GKE infrastructure deployment complete!")
        console.next_steps([
            f"Deploy Cosmos: cosmos-gke deploy -t YOUR_HF_TOKEN -c {cluster} "
            f"-z {settings.gcp.zone} -p {settings.gcp.project_id}",
            f"Monitor the deployment: kubectl get pods -n {settings.cosmos.namespace} -w",
        ])
        return 0

    console.banner("Destroying GKE infrastructure")
    print("This will destroy the VPC, GKE cluster and GPU node pool.\n")
    if not stack.destroy(_confirm, force=args.force):
        print("Destruction cancelled.")
        return 0
    print("\nAll infrastructure destroyed successfully!")
    print("Note: If Cosmos was deployed, its persistent disks may still exist in GCP.")
    print(f"Check with: gcloud compute disks list --filter='name~gke-{settings.gcp.cluster_name}'")
    return 0
