"""cosmos-gke status: nodes, GPUs, storage and application pods at a glance."""

import argparse

from .. import console
from ..config import Settings
from .common import add_cluster_arguments, add_namespace_argument, apply_overrides, connect


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser("status", help="Show node, GPU and pod status")
    add_cluster_arguments(parser)
    add_namespace_argument(parser)
    parser.set_defaults(func=run, parser=parser)


def run(args: argparse.Namespace, settings: Settings) -> int:
    settings = apply_overrides(settings, args)
    namespace = settings.cosmos.namespace
    k8s = connect(settings)
    nodes = k8s.list_nodes()

    console.section("Node Status")
    for node in nodes:
        print(
            f"  {node.name:<45} {node.status.value:<9} {node.ip_address:<15} "
            f"{node.accelerator or '-'}"
        )

    console.section("GPU Nodes")
    gpu_nodes = [node for node in nodes if node.accelerator]
    if not gpu_nodes:
        print("  [WARN] no accelerator nodes")
    for node in gpu_nodes:
        print(f"  {node.name}: {node.accelerator}, {node.gpu_count} GPU(s) allocatable")

    console.section("Node Resources")
    for node in nodes:
        print(
            f"  {node.name}: ephemeral-storage={node.metrics.ephemeral_storage_allocatable or '-'} "
            f"nvidia.com/gpu={node.gpu_count}"
        )

    console.section(f"Pods in {namespace}")
    if not k8s.namespace_exists(namespace):
        print(f"  namespace {namespace} does not exist")
        return 0
    pods = k8s.list_pods(namespace)
    if not pods:
        print("  no pods")
    for pod in pods:
        print(
            f"  {pod.name:<45} {pod.phase.value:<9} ready={str(pod.ready):<5} "
            f"restarts={pod.restarts} node={pod.node_name or '-'}"
        )

    console.section("Recent Warning Events")
    events = k8s.list_warning_events(namespace)
    if not events:
        print("  none")
    for event in events:
        print(f"  {event.object_name} {event.reason} (x{event.count}): {event.message}")
    return 0
