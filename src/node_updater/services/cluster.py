"""Kubernetes API operations used by the reconciler."""

import logging
from typing import Any, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from ..errors import NotFoundError, RetryableError, TransportError
from ..models import NODE_IMAGE_LABEL, POOL_LABEL, NodeInfo, OwnerReference, PodInfo

logger = logging.getLogger(__name__)

CAMPAIGN_GROUP = "update.norbinto"
CAMPAIGN_VERSION = "v1"
CAMPAIGN_PLURAL = "safeevicts"

LOG_CHUNK_SIZE = 64 * 1024

# Connection, timeout and protocol failures surface from urllib3 or the socket layer.
API_ERRORS = (ApiException, HTTPError, OSError)


def translate_api_exception(exc: Exception, action: str) -> Exception:
    """Map a Kubernetes API or network failure onto the node-updater error kinds."""
    if not isinstance(exc, ApiException):
        return TransportError(f"{action}: {exc}")
    if exc.status == 404:
        return NotFoundError(f"{action}: not found")
    if exc.status == 409:
        return RetryableError(f"{action}: conflict ({exc.reason})")
    return TransportError(f"{action}: {exc.status} {exc.reason}", status=exc.status)


def _parse_node(node: Any) -> NodeInfo:
    labels = dict(node.metadata.labels or {})
    spec = node.spec
    return NodeInfo(
        name=node.metadata.name,
        pool=labels.get(POOL_LABEL),
        image_version=labels.get(NODE_IMAGE_LABEL),
        unschedulable=bool(spec.unschedulable) if spec else False,
        labels=labels,
    )


def _parse_pod(pod: Any) -> PodInfo:
    metadata = pod.metadata
    env: Dict[str, str] = {}
    for container in (pod.spec.containers if pod.spec else None) or []:
        for variable in container.env or []:
            if variable.value is not None and variable.name not in env:
                env[variable.name] = variable.value

    return PodInfo(
        name=metadata.name,
        namespace=metadata.namespace,
        node_name=pod.spec.node_name if pod.spec else None,
        phase=pod.status.phase if pod.status else None,
        labels=dict(metadata.labels or {}),
        owner_references=[
            OwnerReference(kind=owner.kind, name=owner.name)
            for owner in metadata.owner_references or []
        ],
        env=env,
    )


class ClusterService:
    """Service class for the Kubernetes objects the operator reads and mutates."""

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        batch_v1: client.BatchV1Api,
        custom_objects: Optional[client.CustomObjectsApi] = None,
        request_timeout: Optional[float] = None,
    ):
        self.core_v1 = core_v1
        self.batch_v1 = batch_v1
        self.custom_objects = custom_objects
        self.request_timeout = request_timeout

    def list_nodes(self, pool: Optional[str] = None) -> List[NodeInfo]:
        """List nodes, optionally only those labeled with ``pool``."""
        kwargs: Dict[str, Any] = {"_request_timeout": self.request_timeout}
        if pool:
            kwargs["label_selector"] = f"{POOL_LABEL}={pool}"
        try:
            response = self.core_v1.list_node(**kwargs)
        except API_ERRORS as exc:
            logger.error("Failed to list nodes: %s", exc)
            raise translate_api_exception(exc, "list nodes") from exc
        return [_parse_node(node) for node in response.items or []]

    def set_unschedulable(self, node_name: str, unschedulable: bool) -> None:
        try:
            self.core_v1.patch_node(
                node_name,
                {"spec": {"unschedulable": unschedulable}},
                _request_timeout=self.request_timeout,
            )
        except API_ERRORS as exc:
            logger.error(
                "Failed to set unschedulable=%s on node %s: %s", unschedulable, node_name, exc
            )
            raise translate_api_exception(exc, f"patch node {node_name}") from exc

    def list_pods(self, namespace: Optional[str] = None) -> List[PodInfo]:
        """List pods in one namespace, or cluster-wide when ``namespace`` is None."""
        try:
            if namespace:
                response = self.core_v1.list_namespaced_pod(
                    namespace, _request_timeout=self.request_timeout
                )
            else:
                response = self.core_v1.list_pod_for_all_namespaces(
                    _request_timeout=self.request_timeout
                )
        except API_ERRORS as exc:
            logger.error("Failed to list pods in %s: %s", namespace or "all namespaces", exc)
            raise translate_api_exception(exc, "list pods") from exc
        return [_parse_pod(pod) for pod in response.items or []]

    def read_pod_log(self, namespace: str, name: str) -> str:
        """Stream the pod log and return it in full."""
        try:
            response = self.core_v1.read_namespaced_pod_log(
                name,
                namespace,
                _preload_content=False,
                _request_timeout=self.request_timeout,
            )
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"read logs of pod {namespace}/{name}") from exc

        chunks: List[bytes] = []
        try:
            for chunk in response.stream(LOG_CHUNK_SIZE):
                chunks.append(chunk)
        except (HTTPError, OSError) as exc:
            raise TransportError(f"read logs of pod {namespace}/{name}: {exc}") from exc
        finally:
            response.release_conn()
        return b"".join(chunks).decode("utf-8", errors="replace")

    def delete_pod(self, namespace: str, name: str) -> None:
        try:
            self.core_v1.delete_namespaced_pod(name, namespace, _request_timeout=self.request_timeout)
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"delete pod {namespace}/{name}") from exc

    def delete_job(self, namespace: str, name: str) -> None:
        try:
            self.batch_v1.delete_namespaced_job(
                name,
                namespace,
                propagation_policy="Background",
                _request_timeout=self.request_timeout,
            )
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"delete job {namespace}/{name}") from exc

    def get_config_map(self, namespace: str, name: str) -> Dict[str, str]:
        try:
            config_map = self.core_v1.read_namespaced_config_map(
                name, namespace, _request_timeout=self.request_timeout
            )
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"read ConfigMap {namespace}/{name}") from exc
        return dict(config_map.data or {})

    def create_config_map(self, namespace: str, name: str, data: Dict[str, str]) -> None:
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            data=data,
        )
        try:
            self.core_v1.create_namespaced_config_map(
                namespace, body, _request_timeout=self.request_timeout
            )
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"create ConfigMap {namespace}/{name}") from exc

    def delete_config_map(self, namespace: str, name: str) -> None:
        try:
            self.core_v1.delete_namespaced_config_map(
                name, namespace, _request_timeout=self.request_timeout
            )
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"delete ConfigMap {namespace}/{name}") from exc

    def get_campaign(self, namespace: str, name: str) -> Dict[str, Any]:
        """Read a ``SafeEvict`` custom resource body."""
        if self.custom_objects is None:
            raise TransportError("Custom objects API is not configured")
        try:
            return self.custom_objects.get_namespaced_custom_object(
                CAMPAIGN_GROUP,
                CAMPAIGN_VERSION,
                namespace,
                CAMPAIGN_PLURAL,
                name,
                _request_timeout=self.request_timeout,
            )
        except API_ERRORS as exc:
            raise translate_api_exception(exc, f"read SafeEvict {namespace}/{name}") from exc
