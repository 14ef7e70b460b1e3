"""cosmos-gke verify: check the NVIDIA driver stack and run a GPU smoke test."""

import argparse

from .. import console
from ..config import Settings
from ..models.deployments import SmokeTestResult
from ..services.verifier_service import VerifierService
from .common import add_cluster_arguments, apply_overrides, connect


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "verify",
        help="Verify GPU drivers and run a GPU smoke test",
    )
    add_cluster_arguments(parser)
    parser.set_defaults(func=run, parser=parser)


def run(args: argparse.Namespace, settings: Settings) -> int:
    settings = apply_overrides(settings, args)
    console.banner("GPU Driver Verification")

    report = VerifierService(settings, connect(settings)).verify()

    console.section("Driver installer")
    print("  [OK] driver pods ready" if report.driver_ready else "  [WARN] driver pods not ready yet")

    console.section("Device plugin")
    if report.device_plugin_pods:
        for pod in report.device_plugin_pods:
            print(f"  {pod.name}: {pod.phase.value} (node {pod.node_name or '-'})")
    else:
        print("  [WARN] no device plugin pods found")

    console.section("GPU nodes")
    if report.gpu_nodes:
        for node in report.gpu_nodes:
            print(f"  {node.name}: {node.gpu_count} GPU(s) [{node.accelerator or 'unknown'}]")
    else:
        print("  [WARN] No nodes with GPUs found yet. Run this again in a few minutes.")

    console.section(f"Smoke test: {report.smoke_test.value}")
    if report.smoke_test_logs:
        print(report.smoke_test_logs)

    console.section("Cluster autoscaler")
    print(report.autoscaler_status or "  [WARN] status not available")

    print()
    if report.smoke_test == SmokeTestResult.FAILED:
        print("[ERROR] GPU smoke test failed")
        return 1
    print("GPU driver verification completed!")
    return 0
