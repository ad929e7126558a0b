"""Selection and eviction of idle build-agent pods."""

import logging
from typing import Iterable, List, Optional, Sequence

from .errors import ConfigurationError, MalformedInputError, NodeUpdaterError, NotFoundError
from .models import AGENT_POOL_ENV, CampaignSpec, NodeInfo, PodInfo
from .services.cluster import ClusterService
from .services.devops import AgentRegistryService

logger = logging.getLogger(__name__)


def log_ends_with(log: str, sentinels: Sequence[str]) -> bool:
    """Whether the log ends with one of the sentinels, ignoring trailing whitespace."""
    trimmed = log.rstrip()
    for sentinel in sentinels:
        if not sentinel:
            continue
        if log.endswith(sentinel) or trimmed.endswith(sentinel.rstrip()):
            return True
    return False


def guarded_pods_on(
    pods: Iterable[PodInfo], nodes: Iterable[NodeInfo], namespaces: Iterable[str]
) -> List[PodInfo]:
    """Running pods of the guarded namespaces scheduled on one of ``nodes``."""
    node_names = {node.name for node in nodes}
    guarded = set(namespaces)
    return [
        pod
        for pod in pods
        if pod.is_running and pod.namespace in guarded and pod.node_name in node_names
    ]


class SafeEvictionPipeline:
    """Cordons pools and removes pods that have proven to be idle."""

    def __init__(self, cluster: ClusterService, registry: Optional[AgentRegistryService] = None):
        self.cluster = cluster
        self.registry = registry

    def select_safe_to_evict(
        self, spec: CampaignSpec, pods: Optional[List[PodInfo]] = None
    ) -> List[PodInfo]:
        """Return running pods of guarded namespaces whose log ends with an idle sentinel.

        Pods already carrying every label of ``spec.label_selector`` are
        skipped, and so are pods whose log cannot be read.
        """
        if pods is None:
            pods = self.cluster.list_pods()
        namespaces = set(spec.namespaces)

        selected: List[PodInfo] = []
        for pod in pods:
            if pod.namespace not in namespaces or not pod.is_running:
                continue
            if all(pod.labels.get(key) == value for key, value in spec.label_selector.items()):
                continue
            try:
                log = self.cluster.read_pod_log(pod.namespace, pod.name)
            except NodeUpdaterError as exc:
                logger.warning("Skipping pod %s, log not readable: %s", pod.key, exc)
                continue
            if log_ends_with(log, spec.idle_sentinels):
                selected.append(pod)

        logger.debug("%d pod(s) safe to evict", len(selected))
        return selected

    @staticmethod
    def restrict_to_nodes(pods: Iterable[PodInfo], nodes: Iterable[NodeInfo]) -> List[PodInfo]:
        node_names = {node.name for node in nodes}
        return [pod for pod in pods if pod.node_name in node_names]

    def evict(self, pods: Iterable[PodInfo]) -> int:
        """Evict each pod: deregister its agent, delete its Job, delete the pod.

        The first failure aborts the whole call. Every step is safe to repeat,
        so the next pass starts again from the top for the remaining pods.
        """
        evicted = 0
        for pod in pods:
            agent_pool = pod.env.get(AGENT_POOL_ENV)
            if not agent_pool:
                raise MalformedInputError(
                    f"Pod {pod.key} has no {AGENT_POOL_ENV} environment variable"
                )
            if self.registry is None:
                raise ConfigurationError("Agent registry credentials are not configured")

            self.registry.disable_agent(agent_pool, pod.name)
            self.registry.remove_agent(agent_pool, pod.name)
            logger.debug("Deregistered agent %s from %s", pod.name, agent_pool)

            job_name = pod.job_owner()
            if job_name is None:
                raise NotFoundError(f"Pod {pod.key} is not owned by a Job")
            try:
                self.cluster.delete_job(pod.namespace, job_name)
            except NotFoundError:
                logger.debug("Job %s/%s already deleted", pod.namespace, job_name)

            try:
                self.cluster.delete_pod(pod.namespace, pod.name)
            except NotFoundError:
                logger.debug("Pod %s already deleted", pod.key)

            logger.info("Evicted idle pod %s", pod.key)
            evicted += 1
        return evicted

    def cordon(self, pool_name: str, cordon: bool) -> int:
        """Set the unschedulable flag on every node of the pool. Returns the number changed."""
        changed = 0
        for node in self.cluster.list_nodes(pool_name):
            if node.unschedulable == cordon:
                continue
            self.cluster.set_unschedulable(node.name, cordon)
            changed += 1
        if changed:
            logger.info("%s %d node(s) of pool %s", "Cordoned" if cordon else "Uncordoned", changed, pool_name)
        return changed

    def has_running_guarded_pods(
        self,
        nodes: Iterable[NodeInfo],
        namespaces: Iterable[str],
        pods: Optional[List[PodInfo]] = None,
    ) -> bool:
        """Whether any running pod of a guarded namespace is scheduled on ``nodes``."""
        nodes = list(nodes)
        namespaces = list(namespaces)
        if not nodes:
            return False
        if pods is None:
            pods = [pod for namespace in namespaces for pod in self.cluster.list_pods(namespace)]
        return bool(guarded_pods_on(pods, nodes, namespaces))
