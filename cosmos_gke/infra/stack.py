"""
Stack driver for the declarative path.

Wraps the Pulumi Automation API around the inline program: a local file
backend keeps the state, the stack is named after the cluster, and the
post-apply checks reuse the same cluster context as the imperative tools.
"""

import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Optional

from pulumi import automation as auto

from ..config import Settings
from ..exceptions import PreconditionError
from ..models.cluster import ClusterContext, NodeInfo, NodeStatus
from ..polling import wait_until
from ..services.gcp_service import GCPService
from ..services.kubernetes_service import KubernetesService
from ..services.provisioner_service import cluster_ref
from ..telemetry import traced
from .program import create_program

logger = logging.getLogger(__name__)

PROJECT_NAME = "cosmos-gke"

API_READY_INTERVAL = 10
API_READY_ATTEMPTS = 30
NODES_READY_TIMEOUT = 600


class InfraStack:
    """Preview, apply, inspect and destroy the cluster stack."""

    def __init__(
        self,
        settings: Settings,
        state_dir: Path,
        stack_name: Optional[str] = None,
        gcp_service: Optional[GCPService] = None,
        k8s_factory: Optional[Callable[[ClusterContext], KubernetesService]] = None,
        on_output: Callable[[str], None] = print,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the stack driver.

        Args:
            settings: Application settings, usually overlaid with infra.yaml.
            state_dir: Directory holding the local backend state.
            stack_name: Stack name, the cluster name when omitted.
        """
        self.settings = settings
        self.state_dir = state_dir
        self.stack_name = stack_name or settings.gcp.cluster_name
        self.ref = cluster_ref(settings)
        self.gcp = gcp_service or GCPService(settings.gcp.project_id)
        self._k8s_factory = k8s_factory or (lambda ctx: KubernetesService(settings, ctx))
        self._on_output = on_output
        self._sleep = sleep
        self._stack: Optional[auto.Stack] = None

    @property
    def stack(self) -> auto.Stack:
        """Create or select the stack on first use."""
        if self._stack is None:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            project_settings = auto.ProjectSettings(
                name=PROJECT_NAME,
                runtime="python",
                backend=auto.ProjectBackend(url=self.state_dir.resolve().as_uri()),
            )
            self._stack = auto.create_or_select_stack(
                stack_name=self.stack_name,
                project_name=PROJECT_NAME,
                program=create_program(self.settings),
                opts=auto.LocalWorkspaceOptions(
                    project_settings=project_settings,
                    env_vars={
                        "PULUMI_CONFIG_PASSPHRASE": os.environ.get("PULUMI_CONFIG_PASSPHRASE", ""),
                    },
                ),
            )
            self._stack.set_config("gcp:project", auto.ConfigValue(value=self.settings.gcp.project_id))
            self._stack.set_config("gcp:region", auto.ConfigValue(value=self.settings.gcp.region))
            self._stack.set_config("gcp:zone", auto.ConfigValue(value=self.settings.gcp.zone))
            logger.info(f"Using stack {self.stack_name} with state in {self.state_dir}")
        return self._stack

    def preview(self) -> dict[str, int]:
        """Show the plan and return the change summary by operation."""
        result = self.stack.preview(on_output=self._on_output)
        return dict(result.change_summary)

    def outputs(self) -> dict[str, Any]:
        """Current stack outputs as plain values."""
        return {key: output.value for key, output in self.stack.outputs().items()}

    def _api_answers(self, k8s: KubernetesService) -> bool:
        try:
            k8s.check_connection()
        except PreconditionError:
            return False
        return True

    def _nodes_ready(self, k8s: KubernetesService) -> bool:
        nodes = k8s.list_nodes()
        return bool(nodes) and all(node.status == NodeStatus.READY for node in nodes)

    def wait_for_cluster(self) -> list[NodeInfo]:
        """
        Wait for the API server (fatal) and node readiness (advisory).

        Returns:
            The GPU nodes found afterwards.
        """
        k8s = self._k8s_factory(self.gcp.cluster_context(self.ref))

        logger.info("Waiting for cluster API to be responsive")
        wait_until(
            lambda: self._api_answers(k8s),
            interval=API_READY_INTERVAL,
            max_attempts=API_READY_ATTEMPTS,
            description="cluster API",
            raise_on_timeout=True,
            sleep=self._sleep,
        )

        logger.info("Waiting for nodes to be ready")
        ready = wait_until(
            lambda: self._nodes_ready(k8s),
            interval=15,
            timeout=NODES_READY_TIMEOUT,
            description="nodes to be Ready",
            sleep=self._sleep,
        )
        if not ready:
            logger.warning("Not every node is Ready yet, continuing anyway")

        return k8s.list_gpu_nodes()

    @traced("infra.up")
    def up(self) -> dict[str, Any]:
        """
        Apply the program and wait for the cluster.

        Returns:
            Stack outputs.
        """
        result = self.stack.up(on_output=self._on_output)
        logger.info(f"Stack update finished: {result.summary.result}")
        return {key: output.value for key, output in result.outputs.items()}

    def application_resources(self) -> Optional[dict[str, list[str]]]:
        """
        Resources left in the application namespace, if the cluster answers.

        Returns None when the stack has no cluster or it cannot be reached.
        """
        if not self.outputs().get("cluster_name"):
            return None
        if self.gcp.get_cluster(self.ref) is None:
            return None
        try:
            k8s = self._k8s_factory(self.gcp.cluster_context(self.ref))
            k8s.check_connection()
        except PreconditionError as e:
            logger.warning(f"Could not check for application resources: {e}")
            return None

        namespace = self.settings.cosmos.namespace
        if not k8s.namespace_exists(namespace):
            return None
        return k8s.namespace_inventory(namespace) or None

    @traced("infra.destroy")
    def destroy(self, confirm: Callable[[str], bool], force: bool = False) -> bool:
        """
        Destroy the stack behind two confirmations.

        Args:
            confirm: Asks the operator a yes/no question.
            force: Skip both confirmations.

        Returns:
            True if the stack was destroyed, False if the operator declined.
        """
        leftovers = None if force else self.application_resources()
        if leftovers:
            namespace = self.settings.cosmos.namespace
            logger.warning(
                f"Cosmos application is still deployed in namespace {namespace}. "
                "Its persistent disks will be orphaned; run 'cosmos-gke undeploy --delete-pvcs' first."
            )
            if not confirm("Do you want to continue anyway?"):
                return False

        if not force and not confirm("This will permanently destroy all infrastructure. Continue?"):
            return False

        self.stack.destroy(on_output=self._on_output)
        logger.info("All infrastructure destroyed")
        return True
