"""
Google Cloud service.

Thin wrapper over the Compute Engine, GKE and Service Usage clients that
turns their errors into the tool's error types: ``NotFound`` becomes
"absent" and every other API failure becomes ``ProvisioningError``.
"""

import logging
from typing import Any, Iterable, Optional

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import compute_v1, container_v1, service_usage_v1

from ..exceptions import PreconditionError, ProvisioningError
from ..models.cluster import ClusterContext, ClusterRef
from ..polling import wait_until

logger = logging.getLogger(__name__)

COMPUTE_TIMEOUT = 600
CONTAINER_POLL_INTERVAL = 15
CONTAINER_TIMEOUT = 3600


class GCPService:
    """Service for Google Cloud resource operations in one project."""

    def __init__(
        self,
        project: str,
        credentials: Optional[Any] = None,
        clients: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize the GCP service.

        Args:
            project: GCP project ID.
            credentials: Google credentials, application default when omitted.
            clients: Pre-built API clients keyed by name (``networks``,
                ``subnetworks``, ``firewalls``, ``disks``, ``clusters``,
                ``services``). Missing clients are created on first use.
        """
        self.project = project
        self._credentials = credentials
        self._clients: dict[str, Any] = dict(clients or {})

    def _client(self, name: str) -> Any:
        if name not in self._clients:
            factories = {
                "networks": compute_v1.NetworksClient,
                "subnetworks": compute_v1.SubnetworksClient,
                "firewalls": compute_v1.FirewallsClient,
                "disks": compute_v1.DisksClient,
                "clusters": container_v1.ClusterManagerClient,
                "services": service_usage_v1.ServiceUsageClient,
            }
            try:
                self._clients[name] = factories[name](credentials=self._credentials)
            except auth_exceptions.GoogleAuthError as e:
                raise PreconditionError(
                    f"No usable Google credentials: {e}. Run gcloud auth application-default login."
                ) from e
        return self._clients[name]

    @staticmethod
    def _lookup(description: str, call: Any, **kwargs) -> Optional[Any]:
        """Read a resource, None when it does not exist."""
        try:
            return call(**kwargs)
        except gcp_exceptions.NotFound:
            return None
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Reading {description} failed: {e.message}") from e

    @staticmethod
    def _run_compute(description: str, call: Any, **kwargs) -> None:
        """Issue a Compute Engine mutation and block on its operation."""
        try:
            operation = call(**kwargs)
            operation.result(timeout=COMPUTE_TIMEOUT)
        except gcp_exceptions.Conflict:
            logger.warning(f"{description}: resource already exists")
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"{description} failed: {e.message}") from e

    def _wait_container(self, ref: ClusterRef, operation: Any, description: str) -> None:
        """Poll a GKE operation until it reports DONE."""
        client = self._client("clusters")
        done = container_v1.Operation.Status.DONE

        def finished() -> Optional[Any]:
            try:
                current = client.get_operation(name=ref.operation_path(operation.name))
            except gcp_exceptions.GoogleAPICallError as e:
                raise ProvisioningError(f"Polling {description} failed: {e.message}") from e
            return current if current.status == done else None

        def progress(attempt: int) -> None:
            if attempt % 4 == 0:
                logger.info(f"Still waiting for {description} ({attempt * CONTAINER_POLL_INTERVAL}s elapsed)")

        result = wait_until(
            finished,
            interval=CONTAINER_POLL_INTERVAL,
            timeout=CONTAINER_TIMEOUT,
            description=description,
            on_attempt=progress,
            raise_on_timeout=True,
        )
        if result.error and result.error.code:
            raise ProvisioningError(f"{description} failed: {result.error.message}")
        if result.status_message:
            raise ProvisioningError(f"{description} failed: {result.status_message}")

    # Project and APIs

    def check_project(self) -> None:
        """Raise PreconditionError if the project cannot be read."""
        name = f"projects/{self.project}/services/serviceusage.googleapis.com"
        try:
            self._client("services").get_service(name=name)
        except (gcp_exceptions.NotFound, gcp_exceptions.PermissionDenied) as e:
            raise PreconditionError(
                f"Project {self.project} does not exist or is not accessible: {e.message}"
            ) from e
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Checking project {self.project} failed: {e.message}") from e

    def enable_apis(self, apis: Iterable[str]) -> None:
        """Enable the given ``*.googleapis.com`` services."""
        client = self._client("services")
        for api in apis:
            name = f"projects/{self.project}/services/{api}"
            try:
                client.enable_service(name=name).result(timeout=COMPUTE_TIMEOUT)
            except gcp_exceptions.GoogleAPICallError as e:
                raise ProvisioningError(f"Enabling {api} failed: {e.message}") from e
            logger.info(f"Enabled {api}")

    # Networks

    def get_network(self, name: str) -> Optional[compute_v1.Network]:
        return self._lookup(
            f"network {name}", self._client("networks").get, project=self.project, network=name
        )

    def create_network(self, name: str) -> None:
        network = compute_v1.Network(
            name=name,
            auto_create_subnetworks=False,
            routing_config=compute_v1.NetworkRoutingConfig(routing_mode="REGIONAL"),
        )
        self._run_compute(
            f"Creating network {name}",
            self._client("networks").insert,
            project=self.project,
            network_resource=network,
        )

    def delete_network(self, name: str) -> None:
        self._run_compute(
            f"Deleting network {name}",
            self._client("networks").delete,
            project=self.project,
            network=name,
        )

    def network_url(self, name: str) -> str:
        return f"projects/{self.project}/global/networks/{name}"

    def get_subnetwork(self, region: str, name: str) -> Optional[compute_v1.Subnetwork]:
        return self._lookup(
            f"subnet {name}",
            self._client("subnetworks").get,
            project=self.project,
            region=region,
            subnetwork=name,
        )

    def create_subnetwork(
        self,
        region: str,
        name: str,
        network: str,
        ip_range: str,
        secondary_ranges: dict[str, str],
    ) -> None:
        subnetwork = compute_v1.Subnetwork(
            name=name,
            network=self.network_url(network),
            ip_cidr_range=ip_range,
            region=region,
            private_ip_google_access=True,
            secondary_ip_ranges=[
                compute_v1.SubnetworkSecondaryRange(range_name=k, ip_cidr_range=v)
                for k, v in secondary_ranges.items()
            ],
        )
        self._run_compute(
            f"Creating subnet {name}",
            self._client("subnetworks").insert,
            project=self.project,
            region=region,
            subnetwork_resource=subnetwork,
        )

    def delete_subnetwork(self, region: str, name: str) -> None:
        self._run_compute(
            f"Deleting subnet {name}",
            self._client("subnetworks").delete,
            project=self.project,
            region=region,
            subnetwork=name,
        )

    # Firewall rules

    def get_firewall(self, name: str) -> Optional[compute_v1.Firewall]:
        return self._lookup(
            f"firewall rule {name}", self._client("firewalls").get, project=self.project, firewall=name
        )

    def create_firewall(
        self,
        name: str,
        network: str,
        allowed: dict[str, list[str]],
        source_ranges: list[str],
    ) -> None:
        """
        Create an ingress allow rule.

        ``allowed`` maps protocol to ports, e.g. ``{"tcp": ["22"], "icmp": []}``.
        """
        firewall = compute_v1.Firewall(
            name=name,
            network=self.network_url(network),
            direction="INGRESS",
            allowed=[
                compute_v1.Allowed(I_p_protocol=protocol, ports=ports)
                for protocol, ports in allowed.items()
            ],
            source_ranges=source_ranges,
        )
        self._run_compute(
            f"Creating firewall rule {name}",
            self._client("firewalls").insert,
            project=self.project,
            firewall_resource=firewall,
        )

    def list_firewalls(self, name_prefix: Optional[str] = None, network: Optional[str] = None) -> list[str]:
        """Names of rules matching a name prefix or attached to a network."""
        try:
            rules = list(self._client("firewalls").list(project=self.project))
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Listing firewall rules failed: {e.message}") from e
        names = []
        for rule in rules:
            if name_prefix and rule.name.startswith(name_prefix):
                names.append(rule.name)
            elif network and rule.network.rsplit("/", 1)[-1] == network:
                names.append(rule.name)
        return names

    def delete_firewall(self, name: str) -> None:
        self._run_compute(
            f"Deleting firewall rule {name}",
            self._client("firewalls").delete,
            project=self.project,
            firewall=name,
        )

    # Disks

    def list_unattached_disks(self, zone: str, name_prefix: str) -> list[str]:
        """Disks in the zone with the prefix and no attached instances."""
        try:
            disks = list(self._client("disks").list(project=self.project, zone=zone))
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Listing disks in {zone} failed: {e.message}") from e
        return [d.name for d in disks if d.name.startswith(name_prefix) and not d.users]

    # GKE clusters and node pools

    def get_cluster(self, ref: ClusterRef) -> Optional[container_v1.Cluster]:
        return self._lookup(f"cluster {ref.name}", self._client("clusters").get_cluster, name=ref.path)

    def create_cluster(self, ref: ClusterRef, cluster: container_v1.Cluster) -> None:
        try:
            operation = self._client("clusters").create_cluster(
                parent=ref.location_path, cluster=cluster
            )
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Creating cluster {ref.name} failed: {e.message}") from e
        self._wait_container(ref, operation, f"cluster {ref.name} creation")

    def delete_cluster(self, ref: ClusterRef) -> None:
        try:
            operation = self._client("clusters").delete_cluster(name=ref.path)
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Deleting cluster {ref.name} failed: {e.message}") from e
        self._wait_container(ref, operation, f"cluster {ref.name} deletion")

    def get_node_pool(self, ref: ClusterRef, pool_name: str) -> Optional[container_v1.NodePool]:
        return self._lookup(
            f"node pool {pool_name}",
            self._client("clusters").get_node_pool,
            name=ref.node_pool_path(pool_name),
        )

    def create_node_pool(self, ref: ClusterRef, node_pool: container_v1.NodePool) -> None:
        try:
            operation = self._client("clusters").create_node_pool(
                parent=ref.path, node_pool=node_pool
            )
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProvisioningError(f"Creating node pool {node_pool.name} failed: {e.message}") from e
        self._wait_container(ref, operation, f"node pool {node_pool.name} creation")

    def cluster_context(self, ref: ClusterRef) -> ClusterContext:
        """Resolve the API endpoint and CA of an existing cluster."""
        cluster = self.get_cluster(ref)
        if cluster is None:
            raise PreconditionError(f"Cluster {ref} not found")
        return ClusterContext(
            ref=ref,
            endpoint=cluster.endpoint,
            ca_certificate=cluster.master_auth.cluster_ca_certificate,
        )
