"""
Kubernetes cluster service.

Provides declarative apply, queries for nodes, pods, services and volumes,
and ignore-not-found deletes against one explicitly selected cluster.
"""

import atexit
import base64
import logging
import os
import tempfile
from typing import Any, Optional

import google.auth
import google.auth.transport.requests
import httpx
import yaml
from google.auth import exceptions as auth_exceptions
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import NotFoundError, ResourceNotFoundError

from ..config import Settings
from ..exceptions import PreconditionError, ProvisioningError
from ..models.cluster import (
    ACCELERATOR_LABEL,
    GPU_RESOURCE,
    ClusterContext,
    EventInfo,
    NodeInfo,
    NodeMetrics,
    NodeStatus,
    PersistentVolumeInfo,
    PodInfo,
    PodPhase,
)

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

# Objects every namespace carries that do not count as "application resources".
_BUILTIN_CONFIGMAPS = {"kube-root-ca.crt"}


def _pod_phase(phase: Optional[str]) -> PodPhase:
    try:
        return PodPhase(phase)
    except ValueError:
        return PodPhase.UNKNOWN


class KubernetesService:
    """Service for Kubernetes cluster operations."""

    def __init__(
        self,
        settings: Settings,
        context: Optional[ClusterContext] = None,
        credentials: Optional[Any] = None,
    ):
        """
        Initialize the Kubernetes service.

        Args:
            settings: Application settings.
            context: GKE cluster to talk to. When omitted, the kubeconfig
                named by K8S_KUBECONFIG_PATH is used instead.
            credentials: Google credentials; application default
                credentials are used when omitted.
        """
        self.settings = settings
        self.context = context
        self._credentials = credentials
        self._api_client: Optional[client.ApiClient] = None
        self._core_api: Optional[client.CoreV1Api] = None
        self._apps_api: Optional[client.AppsV1Api] = None
        self._batch_api: Optional[client.BatchV1Api] = None
        self._dynamic: Optional[DynamicClient] = None
        self._ca_file: Optional[str] = None
        self._initialized = False

    def _ca_certificate_file(self) -> str:
        """Path of the cluster CA bundle, written once per service."""
        if self._ca_file is None:
            ca_file = tempfile.NamedTemporaryFile(
                prefix="cosmos-gke-ca-", suffix=".crt", delete=False
            )
            with ca_file:
                ca_file.write(base64.b64decode(self.context.ca_certificate))
            atexit.register(os.unlink, ca_file.name)
            self._ca_file = ca_file.name
        return self._ca_file

    def _gke_configuration(self) -> client.Configuration:
        """Build a client configuration from the GKE cluster context."""
        credentials = self._credentials
        if credentials is None:
            credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        request = google.auth.transport.requests.Request()
        if not credentials.valid:
            credentials.refresh(request)

        configuration = client.Configuration()
        configuration.host = self.context.host
        configuration.ssl_ca_cert = self._ca_certificate_file()
        configuration.api_key["authorization"] = credentials.token
        configuration.api_key_prefix["authorization"] = "Bearer"

        # Long waits (model download) outlive a single access token.
        def refresh_token(conf: client.Configuration) -> None:
            if not credentials.valid:
                credentials.refresh(request)
            conf.api_key["authorization"] = credentials.token

        configuration.refresh_api_key_hook = refresh_token
        return configuration

    def _initialize(self) -> None:
        """Initialize the Kubernetes client and probe the API server."""
        if self._initialized:
            return

        if self.context is not None:
            desc = f"GKE cluster {self.context.ref}"
            try:
                configuration = self._gke_configuration()
            except auth_exceptions.GoogleAuthError as e:
                raise PreconditionError(
                    f"No usable Google credentials for {desc}: {e}. "
                    "Run gcloud auth application-default login."
                ) from e
        elif self.settings.kubernetes.kubeconfig_path:
            desc = (
                f"kubeconfig={self.settings.kubernetes.kubeconfig_path}, "
                f"context={self.settings.kubernetes.context or 'default'}"
            )
            configuration = client.Configuration()
            config.load_kube_config(
                config_file=self.settings.kubernetes.kubeconfig_path,
                context=self.settings.kubernetes.context,
                client_configuration=configuration,
            )
        else:
            raise PreconditionError(
                "No cluster selected. Pass --cluster/--zone/--project or set K8S_KUBECONFIG_PATH."
            )

        api_client = client.ApiClient(configuration)
        try:
            client.VersionApi(api_client).get_code()
        except Exception as e:  # noqa: BLE001
            logger.debug("Kubernetes API probe failed", exc_info=True)
            raise PreconditionError(f"Cluster is not reachable via {desc}: {e}") from e

        logger.info("Connected to %s", desc)
        self._api_client = api_client
        self._core_api = client.CoreV1Api(api_client)
        self._apps_api = client.AppsV1Api(api_client)
        self._batch_api = client.BatchV1Api(api_client)
        self._initialized = True

    def check_connection(self) -> None:
        """Raise PreconditionError unless the API server answers."""
        self._initialize()

    @property
    def core_api(self) -> client.CoreV1Api:
        """Core API (nodes, pods, services, events)."""
        self._initialize()
        assert self._core_api is not None
        return self._core_api

    @property
    def apps_api(self) -> client.AppsV1Api:
        """Apps API (deployments, daemonsets)."""
        self._initialize()
        assert self._apps_api is not None
        return self._apps_api

    @property
    def batch_api(self) -> client.BatchV1Api:
        """Batch API (smoke-test jobs)."""
        self._initialize()
        assert self._batch_api is not None
        return self._batch_api

    @property
    def dynamic(self) -> DynamicClient:
        """Dynamic client for server-side apply, built on first use."""
        self._initialize()
        if self._dynamic is None:
            self._dynamic = DynamicClient(self._api_client)
        return self._dynamic

    # Declarative apply / delete

    def _resource(self, api_version: str, kind: str) -> Any:
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise ProvisioningError(
                f"Cluster does not serve {kind} in {api_version}; is the API enabled?"
            ) from e

    def apply(self, manifest: dict[str, Any]) -> None:
        """Server-side apply a single manifest."""
        kind = manifest["kind"]
        metadata = manifest["metadata"]
        name = metadata["name"]
        resource = self._resource(manifest["apiVersion"], kind)
        try:
            self.dynamic.server_side_apply(
                resource,
                body=manifest,
                name=name,
                namespace=metadata.get("namespace"),
                field_manager=self.settings.kubernetes.field_manager,
                force_conflicts=True,
            )
        except ApiException as e:
            logger.error(f"Failed to apply {kind}/{name}: {e}")
            raise ProvisioningError(f"Failed to apply {kind}/{name}: {e.reason}") from e
        logger.info(f"Applied {kind}/{name}")

    def apply_url(self, url: str) -> list[str]:
        """Fetch a multi-document manifest and apply every document in it."""
        response = httpx.get(url, follow_redirects=True, timeout=30.0)
        response.raise_for_status()
        applied = []
        for document in yaml.safe_load_all(response.text):
            if not document:
                continue
            self.apply(document)
            applied.append(f"{document['kind']}/{document['metadata']['name']}")
        return applied

    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> bool:
        """Delete an object, returning False if it did not exist."""
        resource = self._resource(api_version, kind)
        try:
            self.dynamic.delete(
                resource,
                name=name,
                namespace=namespace,
                body={"propagationPolicy": "Background"},
            )
        except NotFoundError:
            return False
        except ApiException as e:
            logger.error(f"Failed to delete {kind}/{name}: {e}")
            raise ProvisioningError(f"Failed to delete {kind}/{name}: {e.reason}") from e
        logger.info(f"Deleted {kind}/{name}")
        return True

    # Nodes

    def list_nodes(self, label_selector: Optional[str] = None) -> list[NodeInfo]:
        """List cluster nodes with their allocatable resources."""
        nodes = self.core_api.list_node(label_selector=label_selector)
        result = []

        for node in nodes.items:
            status = NodeStatus.UNKNOWN
            for condition in node.status.conditions or []:
                if condition.type == "Ready":
                    status = (
                        NodeStatus.READY
                        if condition.status == "True"
                        else NodeStatus.NOT_READY
                    )

            taints = [
                f"{taint.key}={taint.value}:{taint.effect}"
                for taint in node.spec.taints or []
            ]

            ip_address = ""
            for addr in node.status.addresses or []:
                if addr.type == "InternalIP":
                    ip_address = addr.address
                    break

            allocatable = node.status.allocatable or {}
            labels = node.metadata.labels or {}
            metrics = NodeMetrics(
                cpu_allocatable=allocatable.get("cpu", "0"),
                memory_allocatable=allocatable.get("memory", "0"),
                ephemeral_storage_allocatable=allocatable.get("ephemeral-storage"),
                gpu_allocatable=int(allocatable.get(GPU_RESOURCE, "0") or 0),
                pods_capacity=int(allocatable.get("pods", "110")),
            )

            result.append(
                NodeInfo(
                    name=node.metadata.name,
                    status=status,
                    accelerator=labels.get(ACCELERATOR_LABEL),
                    ip_address=ip_address,
                    labels=labels,
                    taints=taints,
                    metrics=metrics,
                )
            )

        return result

    def list_gpu_nodes(self) -> list[NodeInfo]:
        """Nodes that expose allocatable GPUs."""
        return [node for node in self.list_nodes() if node.gpu_count > 0]

    def gpu_capacity(self) -> int:
        """Total allocatable GPUs across the cluster."""
        return sum(node.gpu_count for node in self.list_nodes())

    # Pods

    def list_pods(
        self,
        namespace: str,
        label_selector: Optional[str] = None,
    ) -> list[PodInfo]:
        """List pods in a namespace."""
        pods = self.core_api.list_namespaced_pod(
            namespace=namespace,
            label_selector=label_selector,
        )

        result = []
        for pod in pods.items:
            restarts = sum(cs.restart_count for cs in pod.status.container_statuses or [])
            ready = any(
                c.type == "Ready" and c.status == "True"
                for c in pod.status.conditions or []
            )
            result.append(
                PodInfo(
                    name=pod.metadata.name,
                    namespace=pod.metadata.namespace,
                    phase=_pod_phase(pod.status.phase),
                    ready=ready,
                    node_name=pod.spec.node_name,
                    restarts=restarts,
                    created_at=pod.metadata.creation_timestamp,
                )
            )

        return result

    def pods_ready(self, namespace: str, label_selector: str) -> bool:
        """True when at least one pod matches and all matching pods are Ready."""
        pods = self.list_pods(namespace, label_selector)
        return bool(pods) and all(pod.ready for pod in pods)

    def pods_gone(self, namespace: str, label_selector: str) -> bool:
        """True when no pod matches the selector."""
        return not self.list_pods(namespace, label_selector)

    def get_pod_logs(
        self,
        name: str,
        namespace: str,
        container: Optional[str] = None,
        tail_lines: Optional[int] = None,
    ) -> str:
        """Container log of a pod, optionally only the last lines."""
        try:
            return self.core_api.read_namespaced_pod_log(
                name=name,
                namespace=namespace,
                container=container,
                tail_lines=tail_lines,
            )
        except ApiException as e:
            logger.warning("Could not read logs of %s/%s: %s", namespace, name, e.reason)
            raise

    def list_warning_events(self, namespace: str, limit: int = 20) -> list[EventInfo]:
        """Most recent Warning events in a namespace."""
        events = self.core_api.list_namespaced_event(
            namespace=namespace, field_selector="type=Warning"
        )
        result = [
            EventInfo(
                type=event.type,
                reason=event.reason or "",
                object_name=f"{event.involved_object.kind}/{event.involved_object.name}",
                message=(event.message or "").strip(),
                count=event.count or 1,
            )
            for event in events.items
        ]
        return result[-limit:]

    # Workloads

    def deployment_available(self, name: str, namespace: str) -> bool:
        """True once the deployment reports condition Available=True."""
        try:
            deploy = self.apps_api.read_namespaced_deployment_status(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return any(
            c.type == "Available" and c.status == "True"
            for c in deploy.status.conditions or []
        )

    def daemonsets_present(self, label_selector: str, namespace: str = "kube-system") -> bool:
        """True if any daemon set matches the selector."""
        daemonsets = self.apps_api.list_namespaced_daemon_set(
            namespace=namespace, label_selector=label_selector
        )
        return bool(daemonsets.items)

    def job_status(self, name: str, namespace: str) -> Optional[str]:
        """'succeeded', 'failed' or None while the job is still running."""
        job = self.batch_api.read_namespaced_job_status(name, namespace)
        if job.status.succeeded:
            return "succeeded"
        if job.status.failed:
            return "failed"
        for condition in job.status.conditions or []:
            if condition.type == "Failed" and condition.status == "True":
                return "failed"
        return None

    # Services

    def service_external_address(self, name: str, namespace: str) -> Optional[str]:
        """The first load balancer ingress IP or hostname, if assigned."""
        try:
            svc = self.core_api.read_namespaced_service(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        if svc.status.load_balancer and svc.status.load_balancer.ingress:
            ingress = svc.status.load_balancer.ingress[0]
            return ingress.ip or ingress.hostname
        return None

    # Namespaces and storage

    def namespace_exists(self, namespace: str) -> bool:
        """Check whether a namespace exists."""
        try:
            self.core_api.read_namespace(namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def namespace_inventory(self, namespace: str) -> dict[str, list[str]]:
        """Names of the application objects in a namespace, grouped by kind."""
        core, apps = self.core_api, self.apps_api
        inventory = {
            "deployments": [d.metadata.name for d in apps.list_namespaced_deployment(namespace).items],
            "pods": [p.metadata.name for p in core.list_namespaced_pod(namespace).items],
            "services": [s.metadata.name for s in core.list_namespaced_service(namespace).items],
            "persistentvolumeclaims": self.list_pvc_names(namespace),
            "configmaps": [
                c.metadata.name
                for c in core.list_namespaced_config_map(namespace).items
                if c.metadata.name not in _BUILTIN_CONFIGMAPS
            ],
            "secrets": [
                s.metadata.name
                for s in core.list_namespaced_secret(namespace).items
                if s.type != "kubernetes.io/service-account-token"
            ],
        }
        return {kind: names for kind, names in inventory.items() if names}

    def list_pvc_names(self, namespace: str) -> list[str]:
        """Names of the persistent volume claims in a namespace."""
        claims = self.core_api.list_namespaced_persistent_volume_claim(namespace)
        return [c.metadata.name for c in claims.items]

    def delete_namespace(self, namespace: str) -> bool:
        """Delete a namespace, returning False if it did not exist."""
        try:
            self.core_api.delete_namespace(namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise ProvisioningError(f"Failed to delete namespace {namespace}: {e.reason}") from e
        logger.info(f"Deleted namespace {namespace}")
        return True

    def list_persistent_volumes(self) -> list[PersistentVolumeInfo]:
        """All persistent volumes with their claim references."""
        volumes = self.core_api.list_persistent_volume()
        result = []
        for pv in volumes.items:
            claim = pv.spec.claim_ref
            result.append(
                PersistentVolumeInfo(
                    name=pv.metadata.name,
                    phase=pv.status.phase if pv.status else "Unknown",
                    claim_namespace=claim.namespace if claim else None,
                    claim_name=claim.name if claim else None,
                    capacity=(pv.spec.capacity or {}).get("storage"),
                )
            )
        return result

    def delete_persistent_volume(self, name: str) -> bool:
        """Delete a persistent volume immediately."""
        try:
            self.core_api.delete_persistent_volume(name, grace_period_seconds=0)
        except ApiException as e:
            if e.status == 404:
                return False
            raise ProvisioningError(f"Failed to delete persistent volume {name}: {e.reason}") from e
        logger.info(f"Deleted persistent volume {name}")
        return True

    def get_config_map_data(self, name: str, namespace: str) -> Optional[dict[str, str]]:
        """Data of a config map, or None if it does not exist."""
        try:
            cm = self.core_api.read_namespaced_config_map(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return cm.data or {}
