"""AKS agent pool operations used by the reconciler."""

import copy
import logging
from typing import Any, Optional

from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
from azure.mgmt.containerservice.models import AgentPool

from ..errors import MalformedInputError, NotFoundError, RetryableError, TransportError
from ..models import Pool, PoolMode, ProvisioningState, ScalingConfig

logger = logging.getLogger(__name__)


def translate_azure_error(exc: AzureError, action: str) -> Exception:
    """Map an Azure SDK failure onto the node-updater error kinds."""
    if isinstance(exc, ResourceNotFoundError):
        return NotFoundError(f"{action}: not found")
    if isinstance(exc, HttpResponseError):
        status = exc.status_code
        if status == 404:
            return NotFoundError(f"{action}: not found")
        if status == 409:
            return RetryableError(f"{action}: conflict")
        return TransportError(f"{action}: {status} {exc.reason or exc.message}", status=status)
    return TransportError(f"{action}: {exc}")


def _text(value: Any) -> Optional[str]:
    """Return the plain string behind an SDK enum or string field."""
    if value is None:
        return None
    return str(getattr(value, "value", value))


def parse_agent_pool(name: str, agent_pool: Any) -> Pool:
    return Pool(
        name=getattr(agent_pool, "name", None) or name,
        mode=PoolMode.parse(_text(getattr(agent_pool, "mode", None))),
        provisioning_state=ProvisioningState(_text(getattr(agent_pool, "provisioning_state", None))),
        count=getattr(agent_pool, "count", None),
        min_count=getattr(agent_pool, "min_count", None),
        max_count=getattr(agent_pool, "max_count", None),
        enable_auto_scaling=bool(getattr(agent_pool, "enable_auto_scaling", False)),
        raw=agent_pool,
    )


class AgentPoolService:
    """Service class for agent pools of a single managed cluster."""

    def __init__(self, agent_pools: Any, resource_group: str, cluster_name: str):
        """
        Args:
            agent_pools: ``ContainerServiceClient.agent_pools`` operations group
            resource_group: Resource group holding the managed cluster
            cluster_name: Managed cluster name
        """
        self.agent_pools = agent_pools
        self.resource_group = resource_group
        self.cluster_name = cluster_name

    def get(self, name: str) -> Pool:
        try:
            agent_pool = self.agent_pools.get(self.resource_group, self.cluster_name, name)
        except AzureError as exc:
            error = translate_azure_error(exc, f"get agent pool '{name}'")
            if not isinstance(error, NotFoundError):
                logger.error("Failed to get agent pool %s: %s", name, exc)
            raise error from exc
        return parse_agent_pool(name, agent_pool)

    def latest_node_image_version(self, name: str) -> str:
        try:
            profile = self.agent_pools.get_upgrade_profile(self.resource_group, self.cluster_name, name)
        except AzureError as exc:
            logger.error("Failed to get upgrade profile for agent pool %s: %s", name, exc)
            raise translate_azure_error(exc, f"get upgrade profile of '{name}'") from exc

        latest = getattr(profile, "latest_node_image_version", None)
        if not latest:
            raise MalformedInputError(f"Latest node image version not available for agent pool '{name}'")
        return latest

    def begin_create_clone(self, name: str, source: Pool) -> None:
        """Submit creation of ``name`` with the profile of ``source``."""
        raw = source.raw
        if raw is None:
            raise MalformedInputError(f"Agent pool '{source.name}' has no configuration to clone")

        agent_pool = AgentPool(
            vm_size=raw.vm_size,
            count=raw.count,
            min_count=raw.min_count,
            max_count=raw.max_count,
            enable_auto_scaling=raw.enable_auto_scaling,
            vnet_subnet_id=raw.vnet_subnet_id,
            mode=raw.mode,
            orchestrator_version=raw.orchestrator_version,
            node_labels=raw.node_labels,
            node_taints=raw.node_taints,
            os_type=raw.os_type,
        )
        logger.info("Creating agent pool %s cloned from %s", name, source.name)
        self._begin_create_or_update(name, agent_pool)

    def begin_update_scaling(self, pool: Pool, config: ScalingConfig) -> None:
        """Submit new scaling settings for ``pool``.

        Raises:
            RetryableError: If the control plane reports a concurrent modification
        """
        if pool.raw is None:
            raise MalformedInputError(f"Agent pool '{pool.name}' has no configuration to update")

        agent_pool = copy.deepcopy(pool.raw)
        if config.is_autoscaled:
            agent_pool.enable_auto_scaling = True
            agent_pool.min_count = config.min_count
            agent_pool.max_count = config.max_count
        else:
            agent_pool.enable_auto_scaling = False
            agent_pool.min_count = None
            agent_pool.max_count = None
            agent_pool.count = config.count
        logger.debug("Applying %s to agent pool %s", config.describe(), pool.name)
        self._begin_create_or_update(pool.name, agent_pool)

    def begin_delete(self, name: str) -> None:
        try:
            self.agent_pools.begin_delete(self.resource_group, self.cluster_name, name)
        except AzureError as exc:
            logger.error("Failed to delete agent pool %s: %s", name, exc)
            raise translate_azure_error(exc, f"delete agent pool '{name}'") from exc

    def begin_upgrade_node_image(self, name: str) -> None:
        try:
            self.agent_pools.begin_upgrade_node_image_version(
                self.resource_group, self.cluster_name, name
            )
        except AzureError as exc:
            logger.error("Failed to start node image upgrade for agent pool %s: %s", name, exc)
            raise translate_azure_error(exc, f"upgrade node image of '{name}'") from exc

    def _begin_create_or_update(self, name: str, agent_pool: Any) -> None:
        try:
            self.agent_pools.begin_create_or_update(
                self.resource_group, self.cluster_name, name, agent_pool
            )
        except AzureError as exc:
            error = translate_azure_error(exc, f"create or update agent pool '{name}'")
            if not isinstance(error, RetryableError):
                logger.error("Failed to create or update agent pool %s: %s", name, exc)
            raise error from exc
