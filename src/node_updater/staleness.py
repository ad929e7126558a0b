"""Detection of agent pools running an outdated node image."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from .models import NodeInfo, Pool
from .services.agent_pools import AgentPoolService
from .services.cluster import ClusterService

logger = logging.getLogger(__name__)


@dataclass
class StalenessReport:
    """Everything one staleness pass observed about the monitored pools."""
    pools: Dict[str, Pool] = field(default_factory=dict)
    nodes: Dict[str, List[NodeInfo]] = field(default_factory=dict)
    outdated_nodes: Dict[str, NodeInfo] = field(default_factory=dict)
    outdated_pools: Dict[str, Pool] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return not self.outdated_nodes and not self.outdated_pools


class StalenessDetector:
    """Compares node image versions on the nodes against the upgrade profile."""

    def __init__(self, cluster: ClusterService, pools: AgentPoolService):
        self.cluster = cluster
        self.pools = pools

    def nodes_by_pool(self, pool_names: Iterable[str]) -> Dict[str, List[NodeInfo]]:
        """Group the cluster's nodes by the pool label, for the given pools only."""
        grouped: Dict[str, List[NodeInfo]] = {name: [] for name in pool_names}
        for node in self.cluster.list_nodes():
            if node.pool in grouped:
                grouped[node.pool].append(node)
        return grouped

    def observe(self, pool_names: Sequence[str], nodes: Mapping[str, List[NodeInfo]]) -> Dict[str, Pool]:
        """Read each pool and attach its current and latest node image versions.

        The latest version is only looked up for pools with labeled nodes; a
        pool without nodes has nothing to upgrade.
        """
        observed: Dict[str, Pool] = {}
        for name in pool_names:
            pool = self.pools.get(name)
            images = [node.image_version for node in nodes.get(name, []) if node.image_version]
            if images:
                pool.latest_image = self.pools.latest_node_image_version(name)
                # A half-rolled pool reports a stale image as long as any node carries one.
                pool.current_image = next(
                    (image for image in images if image != pool.latest_image), images[0]
                )
            logger.debug(
                "Pool %s: state=%s current=%s latest=%s",
                name,
                pool.provisioning_state.value,
                pool.current_image,
                pool.latest_image,
            )
            observed[name] = pool
        return observed

    def report(self, pool_names: Sequence[str]) -> StalenessReport:
        """Run one full pass: outdated images merged with pools that are not ready."""
        nodes = self.nodes_by_pool(pool_names)
        pools = self.observe(pool_names, nodes)
        outdated_nodes, outdated_pools = self._outdated(pools, nodes)
        outdated_pools.update(self.not_ready(pools.values()))
        logger.debug(
            "Outdated nodes: %d, outdated pools: %d", len(outdated_nodes), len(outdated_pools)
        )
        return StalenessReport(
            pools=pools, nodes=nodes, outdated_nodes=outdated_nodes, outdated_pools=outdated_pools
        )

    def compute_outdated(self, pool_names: Sequence[str]) -> Tuple[Dict[str, NodeInfo], Dict[str, Pool]]:
        """Return the nodes and pools whose node image differs from the latest one."""
        nodes = self.nodes_by_pool(pool_names)
        return self._outdated(self.observe(pool_names, nodes), nodes)

    @staticmethod
    def not_ready(pools: Iterable[Pool]) -> Dict[str, Pool]:
        return {pool.name: pool for pool in pools if not pool.is_ready}

    @staticmethod
    def _outdated(
        pools: Mapping[str, Pool], nodes: Mapping[str, List[NodeInfo]]
    ) -> Tuple[Dict[str, NodeInfo], Dict[str, Pool]]:
        outdated_nodes: Dict[str, NodeInfo] = {}
        outdated_pools: Dict[str, Pool] = {}
        for name, pool in pools.items():
            if not pool.image_outdated:
                continue
            outdated_pools[name] = pool
            for node in nodes.get(name, []):
                outdated_nodes[node.name] = node
        return outdated_nodes, outdated_pools
