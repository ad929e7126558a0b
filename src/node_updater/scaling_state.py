"""Persisted pre-upgrade scaling settings, one ConfigMap per campaign."""

import logging
from typing import Dict, Mapping

from .errors import NotFoundError, PreconditionError, RetryableError
from .models import ScalingConfig
from .services.agent_pools import AgentPoolService
from .services.cluster import ClusterService

logger = logging.getLogger(__name__)


class ScalingStateStore:
    """Write-once record of how each pool was scaled before the campaign touched it.

    The record lives in ``namespace`` as a ConfigMap whose keys are pool names
    and whose values are the JSON produced by ``ScalingConfig.to_record``.
    """

    def __init__(self, cluster: ClusterService, pools: AgentPoolService, namespace: str):
        self.cluster = cluster
        self.pools = pools
        self.namespace = namespace

    def get(self, record_name: str) -> Dict[str, ScalingConfig]:
        """Return the stored settings per pool.

        Raises:
            NotFoundError: If no record exists
            MalformedInputError: If a stored value cannot be parsed
        """
        data = self.cluster.get_config_map(self.namespace, record_name)
        return {pool: ScalingConfig.from_record(raw) for pool, raw in data.items()}

    def create_if_absent(self, record_name: str, snapshot: Mapping[str, ScalingConfig]) -> bool:
        """Store ``snapshot`` unless a record already exists. Returns True when written."""
        try:
            self.cluster.get_config_map(self.namespace, record_name)
            logger.debug("Scaling record %s already exists, keeping it", record_name)
            return False
        except NotFoundError:
            pass

        data = {pool: config.to_record() for pool, config in snapshot.items()}
        try:
            self.cluster.create_config_map(self.namespace, record_name, data)
        except RetryableError:
            logger.info("Scaling record %s was created concurrently, keeping it", record_name)
            return False
        logger.info("Stored scaling record %s for %d pool(s)", record_name, len(data))
        return True

    def delete(self, record_name: str) -> None:
        try:
            self.cluster.delete_config_map(self.namespace, record_name)
        except NotFoundError:
            logger.debug("Scaling record %s already gone", record_name)
            return
        logger.info("Deleted scaling record %s", record_name)

    def set_scaling(self, pool_name: str, config: ScalingConfig) -> bool:
        """Apply ``config`` to the live pool. Returns True when a change was submitted.

        Raises:
            PreconditionError: If the pool is still busy with another operation
        """
        pool = self.pools.get(pool_name)
        if not pool.is_ready:
            raise PreconditionError(
                f"Pool '{pool_name}' is {pool.provisioning_state.value}, cannot change scaling yet"
            )
        if pool.matches(config):
            logger.debug("Pool %s already at %s", pool_name, config.describe())
            return False
        try:
            self.pools.begin_update_scaling(pool, config)
        except RetryableError as exc:
            logger.info("Scaling change on %s deferred: %s", pool_name, exc)
            return False
        logger.info("Restored pool %s to %s", pool_name, config.describe())
        return True
