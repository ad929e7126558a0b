"""Lifecycle of the temporary pool that absorbs workload during an upgrade."""

import logging
from typing import Iterable, Optional

from .errors import NotFoundError, RetryableError
from .models import Pool, ProvisioningState, ScalingConfig
from .services.agent_pools import AgentPoolService

logger = logging.getLogger(__name__)


class SurgeCapacityManager:
    """Creates, freezes and removes the temporary (surge) pool."""

    def __init__(self, pools: AgentPoolService):
        self.pools = pools

    def get(self, name: str) -> Optional[Pool]:
        """Return the pool, or None when it does not exist."""
        try:
            return self.pools.get(name)
        except NotFoundError:
            return None

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def create(self, name: str, base_pool_name: str) -> None:
        """Submit creation of ``name`` with the profile of the base pool.

        Returns once the request is accepted; provisioning continues in the
        background and is followed through ``provisioning_state``.
        """
        base = self.pools.get(base_pool_name)
        self.pools.begin_create_clone(name, base)
        logger.info("Requested temporary pool %s cloned from %s", name, base_pool_name)

    def provisioning_state(self, name: str) -> ProvisioningState:
        return self.pools.get(name).provisioning_state

    def disable_autoscaling(self, pools: Iterable[Pool]) -> None:
        """Pin every ready user pool to its current node count.

        System pools and pools still busy with another operation are left
        alone. A conflict means another actor changed the pool first; the
        next pass sees the result.
        """
        for pool in pools:
            if pool.is_system:
                logger.debug("Skipping system pool %s", pool.name)
                continue
            if not pool.is_ready:
                logger.debug(
                    "Skipping pool %s in state %s", pool.name, pool.provisioning_state.value
                )
                continue
            if pool.count is None:
                logger.warning("Pool %s reports no node count, leaving its scaling as is", pool.name)
                continue

            target = ScalingConfig.fixed(pool.count)
            if pool.matches(target):
                continue
            try:
                self.pools.begin_update_scaling(pool, target)
            except RetryableError as exc:
                logger.info("Autoscaling change on %s deferred: %s", pool.name, exc)
                continue
            logger.info("Disabled autoscaling on pool %s at %d node(s)", pool.name, pool.count)

    def remove(self, name: str) -> None:
        self.pools.begin_delete(name)
        logger.info("Requested deletion of temporary pool %s", name)
