"""
Cluster teardown.

Removes the application (when the cluster still answers), the cluster,
its firewall rules, the subnet and the VPC. Leftover persistent disks are
reported for manual review and never deleted.
"""

import logging
import time
from typing import Callable, Optional

from ..config import Settings
from ..exceptions import CosmosGKEError, PreconditionError
from ..models.cluster import ClusterContext
from ..models.provisioning import StepOutcome, StepResult, TeardownReport
from ..telemetry import step_span, traced
from .deployment_service import DeploymentService
from .gcp_service import GCPService
from .kubernetes_service import KubernetesService
from .provisioner_service import cluster_ref

logger = logging.getLogger(__name__)

RELEASE_DELAY = 10


class TeardownService:
    """Service that deletes everything the provisioner created."""

    def __init__(
        self,
        settings: Settings,
        gcp_service: GCPService,
        k8s_factory: Optional[Callable[[ClusterContext], KubernetesService]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the teardown service."""
        self.settings = settings
        self.gcp = gcp_service
        self.ref = cluster_ref(settings)
        self._k8s_factory = k8s_factory or (lambda ctx: KubernetesService(settings, ctx))
        self._sleep = sleep

    def describe(self) -> list[str]:
        """What a teardown run will remove, for the confirmation prompt."""
        net = self.settings.network
        return [
            f"GKE Cluster: {self.ref.name}",
            f"Zone: {self.ref.zone}",
            f"All workloads in namespace: {self.settings.cosmos.namespace}",
            "All associated persistent volumes",
            f"VPC network: {net.vpc_name}",
            f"Subnet: {net.subnet_name}",
            "Associated firewall rules",
        ]

    def _reachable_cluster(self) -> Optional[KubernetesService]:
        if self.gcp.get_cluster(self.ref) is None:
            return None
        try:
            k8s = self._k8s_factory(self.gcp.cluster_context(self.ref))
            k8s.check_connection()
        except PreconditionError as e:
            logger.warning(f"Skipping application cleanup: {e}")
            return None
        return k8s

    def delete_application(self, k8s: KubernetesService) -> list[str]:
        """Remove the workload with its claims, then the volumes they held."""
        namespace = self.settings.cosmos.namespace
        deployer = DeploymentService(self.settings, k8s, sleep=self._sleep)
        if deployer.inventory(namespace) is None:
            logger.warning(f"Namespace {namespace} not found. Skipping Cosmos deletion.")
        else:
            deployer.undeploy(namespace, delete_pvcs=True)

        deleted = []
        for pv in k8s.list_persistent_volumes():
            if pv.claim_namespace == namespace and k8s.delete_persistent_volume(pv.name):
                deleted.append(pv.name)
        return deleted

    def delete_cluster(self) -> StepResult:
        if self.gcp.get_cluster(self.ref) is None:
            logger.warning(f"Cluster {self.ref.name} not found in zone {self.ref.zone}")
            return StepResult(resource="cluster", name=self.ref.name, outcome=StepOutcome.MISSING)
        logger.info(f"Deleting GKE cluster {self.ref.name}")
        with step_span("teardown", "cluster", self.ref.name):
            self.gcp.delete_cluster(self.ref)
        return StepResult(resource="cluster", name=self.ref.name, outcome=StepOutcome.DELETED)

    def delete_firewall_rules(self) -> list[StepResult]:
        """Delete GKE-created and VPC rules; failures are only warnings."""
        vpc = self.settings.network.vpc_name
        names = self.gcp.list_firewalls(name_prefix=f"gke-{self.ref.name}", network=vpc)
        steps = []
        for name in names:
            try:
                self.gcp.delete_firewall(name)
            except CosmosGKEError as e:
                logger.warning(f"Could not delete firewall rule {name}: {e}")
                steps.append(StepResult(resource="firewall", name=name, outcome=StepOutcome.FAILED))
                continue
            steps.append(StepResult(resource="firewall", name=name, outcome=StepOutcome.DELETED))
        return steps

    def find_orphaned_disks(self) -> list[str]:
        disks = self.gcp.list_unattached_disks(self.ref.zone, f"gke-{self.ref.name}")
        if disks:
            logger.warning(
                "Found potentially orphaned disks. Please review and delete manually if needed: "
                + ", ".join(disks)
            )
        return disks

    def delete_network(self) -> list[StepResult]:
        """Subnet first, then the VPC, each only if present."""
        net = self.settings.network
        region = self.settings.gcp.region
        steps = []

        if self.gcp.get_subnetwork(region, net.subnet_name) is None:
            logger.warning(f"Subnet {net.subnet_name} not found in region {region}")
            steps.append(StepResult(resource="subnet", name=net.subnet_name, outcome=StepOutcome.MISSING))
        else:
            self.gcp.delete_subnetwork(region, net.subnet_name)
            steps.append(StepResult(resource="subnet", name=net.subnet_name, outcome=StepOutcome.DELETED))

        if self.gcp.get_network(net.vpc_name) is None:
            logger.warning(f"VPC {net.vpc_name} not found")
            steps.append(StepResult(resource="network", name=net.vpc_name, outcome=StepOutcome.MISSING))
        else:
            self.gcp.delete_network(net.vpc_name)
            steps.append(StepResult(resource="network", name=net.vpc_name, outcome=StepOutcome.DELETED))
        return steps

    @traced("teardown")
    def teardown(self) -> TeardownReport:
        """
        Delete the application, cluster and network.

        Raises:
            PreconditionError: Project unset.
            ProvisioningError: Deleting the cluster, subnet or VPC failed.
        """
        self.settings.gcp.require_project()
        report = TeardownReport()

        k8s = self._reachable_cluster()
        if k8s is not None:
            for name in self.delete_application(k8s):
                report.steps.append(
                    StepResult(resource="persistent volume", name=name, outcome=StepOutcome.DELETED)
                )

        report.steps.append(self.delete_cluster())
        report.steps.extend(self.delete_firewall_rules())
        report.orphaned_disks = self.find_orphaned_disks()

        logger.info("Waiting for cluster resources to be fully released")
        self._sleep(RELEASE_DELAY)
        report.steps.extend(self.delete_network())
        return report
