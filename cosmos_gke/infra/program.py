"""
Pulumi inline program for the GKE GPU cluster.

Declares the same resource set the imperative provisioner creates, with
explicit dependencies: network -> subnet -> firewall rules -> cluster ->
node pools. The engine destroys them in reverse order.
"""

import pulumi
import pulumi_gcp as gcp

from ..config import Settings
from ..services.provisioner_service import (
    GPU_POOL_DISK_TYPE,
    GPU_POOL_SCOPES,
    PODS_RANGE_NAME,
    REQUIRED_APIS,
    SERVICES_RANGE_NAME,
    SYSTEM_DISK_SIZE,
    SYSTEM_MACHINE_TYPE,
    SYSTEM_POOL_NAME,
)


def create_program(settings: Settings):
    """
    Create a Pulumi inline program function closed over the settings.

    Returns:
        A callable suitable for ``pulumi.automation.create_or_select_stack``.
    """

    def pulumi_program():
        project_id = settings.gcp.project_id
        region = settings.gcp.region
        zone = settings.gcp.zone
        net = settings.network
        pool = settings.node_pool

        # 1. APIs
        enabled_apis = [
            gcp.projects.Service(
                f"api-{api.split('.')[0]}",
                service=api,
                project=project_id,
                disable_on_destroy=False,
                disable_dependent_services=False,
            )
            for api in REQUIRED_APIS
        ]

        # 2. VPC and subnet
        network = gcp.compute.Network(
            net.vpc_name,
            name=net.vpc_name,
            project=project_id,
            auto_create_subnetworks=False,
            routing_mode="REGIONAL",
            opts=pulumi.ResourceOptions(depends_on=enabled_apis),
        )

        subnet = gcp.compute.Subnetwork(
            net.subnet_name,
            name=net.subnet_name,
            project=project_id,
            region=region,
            network=network.id,
            ip_cidr_range=net.subnet_range,
            private_ip_google_access=True,
            secondary_ip_ranges=[
                gcp.compute.SubnetworkSecondaryIpRangeArgs(
                    range_name=PODS_RANGE_NAME, ip_cidr_range=net.pods_range
                ),
                gcp.compute.SubnetworkSecondaryIpRangeArgs(
                    range_name=SERVICES_RANGE_NAME, ip_cidr_range=net.services_range
                ),
            ],
        )

        # 3. Firewall rules
        allow_internal = gcp.compute.Firewall(
            f"{net.vpc_name}-allow-internal",
            name=f"{net.vpc_name}-allow-internal",
            project=project_id,
            network=network.name,
            allows=[
                gcp.compute.FirewallAllowArgs(protocol=protocol)
                for protocol in ("tcp", "udp", "icmp")
            ],
            source_ranges=net.internal_ranges,
        )
        allow_ssh = gcp.compute.Firewall(
            f"{net.vpc_name}-allow-ssh",
            name=f"{net.vpc_name}-allow-ssh",
            project=project_id,
            network=network.name,
            allows=[gcp.compute.FirewallAllowArgs(protocol="tcp", ports=["22"])],
            source_ranges=["0.0.0.0/0"],
        )

        # 4. GKE cluster
        cluster = gcp.container.Cluster(
            settings.gcp.cluster_name,
            name=settings.gcp.cluster_name,
            project=project_id,
            location=zone,
            network=network.name,
            subnetwork=subnet.name,
            remove_default_node_pool=True,
            initial_node_count=1,
            ip_allocation_policy=gcp.container.ClusterIpAllocationPolicyArgs(
                cluster_secondary_range_name=PODS_RANGE_NAME,
                services_secondary_range_name=SERVICES_RANGE_NAME,
            ),
            release_channel=gcp.container.ClusterReleaseChannelArgs(channel="REGULAR"),
            workload_identity_config=gcp.container.ClusterWorkloadIdentityConfigArgs(
                workload_pool=f"{project_id}.svc.id.goog",
            ),
            addons_config=gcp.container.ClusterAddonsConfigArgs(
                gce_persistent_disk_csi_driver_config=(
                    gcp.container.ClusterAddonsConfigGcePersistentDiskCsiDriverConfigArgs(
                        enabled=True
                    )
                ),
            ),
            deletion_protection=False,
            opts=pulumi.ResourceOptions(depends_on=[allow_internal, allow_ssh]),
        )

        # 5. Node pools
        management = gcp.container.NodePoolManagementArgs(auto_repair=True, auto_upgrade=True)

        gcp.container.NodePool(
            SYSTEM_POOL_NAME,
            name=SYSTEM_POOL_NAME,
            project=project_id,
            location=zone,
            cluster=cluster.name,
            initial_node_count=1,
            autoscaling=gcp.container.NodePoolAutoscalingArgs(
                min_node_count=1, max_node_count=2
            ),
            management=management,
            node_config=gcp.container.NodePoolNodeConfigArgs(
                machine_type=SYSTEM_MACHINE_TYPE,
                disk_size_gb=SYSTEM_DISK_SIZE,
            ),
        )

        gpu_pool = gcp.container.NodePool(
            pool.pool_name,
            name=pool.pool_name,
            project=project_id,
            location=zone,
            cluster=cluster.name,
            initial_node_count=pool.num_nodes,
            autoscaling=gcp.container.NodePoolAutoscalingArgs(
                min_node_count=pool.min_nodes,
                max_node_count=pool.max_nodes,
            ),
            management=management,
            node_config=gcp.container.NodePoolNodeConfigArgs(
                machine_type=pool.machine_type,
                disk_size_gb=pool.disk_size,
                disk_type=GPU_POOL_DISK_TYPE,
                oauth_scopes=GPU_POOL_SCOPES,
                guest_accelerators=[
                    gcp.container.NodePoolNodeConfigGuestAcceleratorArgs(
                        type=pool.gpu_type,
                        count=pool.gpu_count,
                    )
                ],
            ),
        )

        # 6. Stack exports
        pulumi.export("project", project_id)
        pulumi.export("zone", zone)
        pulumi.export("cluster_name", cluster.name)
        pulumi.export("cluster_endpoint", cluster.endpoint)
        pulumi.export("network", network.name)
        pulumi.export("subnet", subnet.name)
        pulumi.export("gpu_pool", gpu_pool.name)

    return pulumi_program
