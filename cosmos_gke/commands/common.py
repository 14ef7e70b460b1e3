"""Argument and connection helpers shared by the subcommands."""

import argparse
import os
import re
from typing import Any

from ..config import Settings
from ..services.gcp_service import GCPService
from ..services.kubernetes_service import KubernetesService
from ..services.provisioner_service import cluster_ref

_QUANTITY = re.compile(r"^[1-9][0-9]*(Ki|Mi|Gi|Ti|Pi)?$")

# CLI argument name -> (settings group, field)
_ARG_FIELDS = {
    "project": ("gcp", "project_id"),
    "region": ("gcp", "region"),
    "zone": ("gcp", "zone"),
    "cluster": ("gcp", "cluster_name"),
    "vpc": ("network", "vpc_name"),
    "subnet": ("network", "subnet_name"),
    "gpu_type": ("node_pool", "gpu_type"),
    "machine_type": ("node_pool", "machine_type"),
    "gpu_count": ("node_pool", "gpu_count"),
    "num_nodes": ("node_pool", "num_nodes"),
    "min_nodes": ("node_pool", "min_nodes"),
    "max_nodes": ("node_pool", "max_nodes"),
    "disk_size": ("node_pool", "disk_size"),
    "namespace": ("cosmos", "namespace"),
    "token": ("cosmos", "hf_token"),
    "model_id": ("cosmos", "model_id"),
    "image": ("cosmos", "image"),
    "model_storage": ("cosmos", "model_storage"),
    "cache_storage": ("cosmos", "cache_storage"),
    "replicas": ("cosmos", "replicas"),
    "service_type": ("cosmos", "service_type"),
}


def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def storage_quantity(value: str) -> str:
    """argparse type for PVC sizes such as ``150Gi``."""
    if not _QUANTITY.match(value):
        raise argparse.ArgumentTypeError(f"expected a positive size like 150Gi, got '{value}'")
    return value


def add_cluster_arguments(parser: argparse.ArgumentParser, env_defaults: bool = False) -> None:
    """
    Add -c/--cluster, -z/--zone and -p/--project.

    With ``env_defaults`` the values fall back to CLUSTER_NAME, GCP_ZONE and
    GCP_PROJECT_ID only, so ``require_arguments`` can tell them apart from
    built-in defaults.
    """
    def default(var: str) -> Any:
        return os.environ.get(var) if env_defaults else None

    parser.add_argument("-c", "--cluster", default=default("CLUSTER_NAME"), help="GKE cluster name")
    parser.add_argument("-z", "--zone", default=default("GCP_ZONE"), help="GKE cluster zone")
    parser.add_argument("-p", "--project", default=default("GCP_PROJECT_ID"), help="GCP project ID")


def add_namespace_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-n", "--namespace", help="Application namespace (default: cosmos)")


def require_arguments(args: argparse.Namespace, *names: str) -> None:
    """Print usage and exit non-zero when a required value is missing."""
    missing = [f"--{name.replace('_', '-')}" for name in names if not getattr(args, name, None)]
    if missing:
        args.parser.error(f"the following arguments are required: {', '.join(missing)}")


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Overlay the given CLI flags onto the settings."""
    updates: dict[str, dict[str, Any]] = {}
    for arg, (group, field) in _ARG_FIELDS.items():
        value = getattr(args, arg, None)
        if value is not None:
            updates.setdefault(group, {})[field] = value
    if not updates:
        return settings
    return settings.model_copy(
        update={
            group: getattr(settings, group).model_copy(update=values)
            for group, values in updates.items()
        }
    )


def gcp_for(settings: Settings) -> GCPService:
    return GCPService(settings.gcp.require_project())


def connect(settings: Settings) -> KubernetesService:
    """
    Kubernetes service for the selected cluster.

    An explicit kubeconfig wins; otherwise the endpoint and CA come from the
    GKE API for (project, zone, cluster).
    """
    if settings.kubernetes.kubeconfig_path:
        return KubernetesService(settings)
    context = gcp_for(settings).cluster_context(cluster_ref(settings))
    return KubernetesService(settings, context)
