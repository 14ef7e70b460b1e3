"""
Imperative cluster provisioning.

Ensures the VPC, subnet, firewall rules, GKE cluster and GPU node pool
exist, in that order. Every step checks for the resource first and skips
it with a warning when it is already there, so re-runs are safe. A failed
creation aborts the run; nothing already created is rolled back.
"""

import logging
import time
from typing import Callable, Optional

from google.cloud import container_v1

from ..config import Settings
from ..models.cluster import ClusterContext, ClusterRef
from ..models.provisioning import ProvisionReport, StepOutcome, StepResult
from ..polling import wait_until
from ..telemetry import step_span, traced
from .gcp_service import GCPService
from .kubernetes_service import KubernetesService
from .verifier_service import VerifierService

logger = logging.getLogger(__name__)

REQUIRED_APIS = (
    "compute.googleapis.com",
    "container.googleapis.com",
    "containerregistry.googleapis.com",
)

SYSTEM_POOL_NAME = "default-pool"
SYSTEM_MACHINE_TYPE = "e2-standard-4"
SYSTEM_DISK_SIZE = 50

GPU_POOL_DISK_TYPE = "pd-balanced"
GPU_POOL_SCOPES = [
    "https://www.googleapis.com/auth/devstorage.read_only",
    "https://www.googleapis.com/auth/logging.write",
    "https://www.googleapis.com/auth/monitoring",
    "https://www.googleapis.com/auth/servicecontrol",
    "https://www.googleapis.com/auth/service.management.readonly",
    "https://www.googleapis.com/auth/trace.append",
]

PODS_RANGE_NAME = "pods"
SERVICES_RANGE_NAME = "services"


def cluster_ref(settings: Settings) -> ClusterRef:
    return ClusterRef(
        project=settings.gcp.project_id,
        zone=settings.gcp.zone,
        name=settings.gcp.cluster_name,
    )


def build_cluster(settings: Settings) -> container_v1.Cluster:
    """Cluster with a small autoscaling system pool and VPC-native networking."""
    system_pool = container_v1.NodePool(
        name=SYSTEM_POOL_NAME,
        initial_node_count=1,
        config=container_v1.NodeConfig(
            machine_type=SYSTEM_MACHINE_TYPE,
            disk_size_gb=SYSTEM_DISK_SIZE,
        ),
        autoscaling=container_v1.NodePoolAutoscaling(
            enabled=True, min_node_count=1, max_node_count=2
        ),
        management=container_v1.NodeManagement(auto_repair=True, auto_upgrade=True),
    )

    return container_v1.Cluster(
        name=settings.gcp.cluster_name,
        network=settings.network.vpc_name,
        subnetwork=settings.network.subnet_name,
        node_pools=[system_pool],
        ip_allocation_policy=container_v1.IPAllocationPolicy(
            use_ip_aliases=True,
            cluster_secondary_range_name=PODS_RANGE_NAME,
            services_secondary_range_name=SERVICES_RANGE_NAME,
        ),
        release_channel=container_v1.ReleaseChannel(
            channel=container_v1.ReleaseChannel.Channel.REGULAR
        ),
        workload_identity_config=container_v1.WorkloadIdentityConfig(
            workload_pool=f"{settings.gcp.project_id}.svc.id.goog"
        ),
        addons_config=container_v1.AddonsConfig(
            gce_persistent_disk_csi_driver_config=container_v1.GcePersistentDiskCsiDriverConfig(
                enabled=True
            )
        ),
    )


def build_gpu_node_pool(settings: Settings) -> container_v1.NodePool:
    """Autoscaling GPU pool sized from the node pool settings."""
    pool = settings.node_pool
    return container_v1.NodePool(
        name=pool.pool_name,
        initial_node_count=pool.num_nodes,
        config=container_v1.NodeConfig(
            machine_type=pool.machine_type,
            disk_size_gb=pool.disk_size,
            disk_type=GPU_POOL_DISK_TYPE,
            oauth_scopes=GPU_POOL_SCOPES,
            accelerators=[
                container_v1.AcceleratorConfig(
                    accelerator_count=pool.gpu_count,
                    accelerator_type=pool.gpu_type,
                )
            ],
        ),
        autoscaling=container_v1.NodePoolAutoscaling(
            enabled=True,
            min_node_count=pool.min_nodes,
            max_node_count=pool.max_nodes,
        ),
        management=container_v1.NodeManagement(auto_repair=True, auto_upgrade=True),
    )


class ProvisionerService:
    """Service that brings a GPU-ready GKE cluster into existence."""

    def __init__(
        self,
        settings: Settings,
        gcp_service: GCPService,
        k8s_factory: Optional[Callable[[ClusterContext], KubernetesService]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the provisioner service."""
        self.settings = settings
        self.gcp = gcp_service
        self.ref = cluster_ref(settings)
        self._k8s_factory = k8s_factory or (lambda ctx: KubernetesService(settings, ctx))
        self._sleep = sleep

    def _ensure(
        self,
        resource: str,
        name: str,
        exists: Callable[[], bool],
        create: Callable[[], None],
    ) -> StepResult:
        if exists():
            logger.warning(f"{resource} {name} already exists. Skipping creation.")
            return StepResult(resource=resource, name=name, outcome=StepOutcome.EXISTS)

        logger.info(f"Creating {resource} {name}")
        with step_span("provision", resource, name):
            create()
        logger.info(f"{resource} {name} created")
        return StepResult(resource=resource, name=name, outcome=StepOutcome.CREATED)

    def ensure_network(self) -> list[StepResult]:
        """VPC, subnet and the two firewall rules."""
        net = self.settings.network
        region = self.settings.gcp.region
        steps = [
            self._ensure(
                "network",
                net.vpc_name,
                lambda: self.gcp.get_network(net.vpc_name) is not None,
                lambda: self.gcp.create_network(net.vpc_name),
            ),
            self._ensure(
                "subnet",
                net.subnet_name,
                lambda: self.gcp.get_subnetwork(region, net.subnet_name) is not None,
                lambda: self.gcp.create_subnetwork(
                    region,
                    net.subnet_name,
                    net.vpc_name,
                    net.subnet_range,
                    {PODS_RANGE_NAME: net.pods_range, SERVICES_RANGE_NAME: net.services_range},
                ),
            ),
        ]

        firewall_rules = {
            f"{net.vpc_name}-allow-internal": (
                {"tcp": [], "udp": [], "icmp": []},
                net.internal_ranges,
            ),
            f"{net.vpc_name}-allow-ssh": ({"tcp": ["22"]}, ["0.0.0.0/0"]),
        }
        for rule_name, (allowed, sources) in firewall_rules.items():
            steps.append(
                self._ensure(
                    "firewall",
                    rule_name,
                    lambda rule_name=rule_name: self.gcp.get_firewall(rule_name) is not None,
                    lambda rule_name=rule_name, allowed=allowed, sources=sources: (
                        self.gcp.create_firewall(rule_name, net.vpc_name, allowed, sources)
                    ),
                )
            )
        return steps

    def ensure_cluster(self) -> list[StepResult]:
        """The cluster, then its GPU node pool."""
        pool_name = self.settings.node_pool.pool_name
        return [
            self._ensure(
                "cluster",
                self.ref.name,
                lambda: self.gcp.get_cluster(self.ref) is not None,
                lambda: self.gcp.create_cluster(self.ref, build_cluster(self.settings)),
            ),
            self._ensure(
                "node pool",
                pool_name,
                lambda: self.gcp.get_node_pool(self.ref, pool_name) is not None,
                lambda: self.gcp.create_node_pool(self.ref, build_gpu_node_pool(self.settings)),
            ),
        ]

    def wait_for_gpus(self, k8s: KubernetesService, timeout: float = 60) -> int:
        """Total allocatable GPUs, waiting briefly for the device plugin to report."""
        count = wait_until(
            k8s.gpu_capacity,
            interval=10,
            timeout=timeout,
            description="allocatable GPUs",
            sleep=self._sleep,
        )
        if not count:
            logger.warning(
                "No GPUs detected yet. They may still be initializing; "
                "run 'cosmos-gke status' to check."
            )
            return 0
        logger.info(f"GPUs available in cluster: {count}")
        return count

    @traced("provision")
    def provision(self) -> ProvisionReport:
        """
        Ensure every resource exists, install GPU drivers and count GPUs.

        Raises:
            PreconditionError: Project unset or not accessible.
            ProvisioningError: A creation call failed.
        """
        self.settings.gcp.require_project()
        self.gcp.check_project()
        logger.info(f"Using project: {self.settings.gcp.project_id}")

        logger.info("Enabling required GCP APIs")
        self.gcp.enable_apis(REQUIRED_APIS)

        report = ProvisionReport()
        report.steps.extend(self.ensure_network())
        report.steps.extend(self.ensure_cluster())

        context = self.gcp.cluster_context(self.ref)
        k8s = self._k8s_factory(context)
        k8s.check_connection()

        VerifierService(self.settings, k8s, sleep=self._sleep).ensure_driver_installer()
        report.gpu_count = self.wait_for_gpus(k8s)
        return report
