"""
Reconciliation of one ``SafeEvict`` campaign.

Every pass observes the cluster and the cloud control plane into a
``WorldState``, derives a ``ReconcilePlan`` from it with the side-effect free
``plan_reconcile`` and then applies the plan in order. Nothing about the
progress of a campaign is stored besides the scaling record, so a pass can be
interrupted at any point and the next one picks up from what it observes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from .errors import NodeUpdaterError, NotFoundError, PreconditionError, RetryableError
from .eviction import SafeEvictionPipeline, guarded_pods_on
from .models import Campaign, NodeInfo, Pool, PodInfo, ProvisioningState, ScalingConfig
from .scaling_state import ScalingStateStore
from .services.agent_pools import AgentPoolService
from .services.cluster import ClusterService
from .services.devops import AgentRegistryService
from .staleness import StalenessDetector
from .surge import SurgeCapacityManager
from .utils.config import OperatorConfig

logger = logging.getLogger(__name__)

# States in which the control plane is already rolling a pool.
UPGRADE_IN_FLIGHT = (ProvisioningState.UPGRADING_NODE_IMAGE, ProvisioningState.UPDATING)


class Outcome(str, Enum):
    """How long to wait before the next pass."""
    STEADY = "steady"
    PROGRESS = "progress"
    ERROR = "error"


class ActionKind(str, Enum):
    CREATE_SURGE = "create-surge"
    PERSIST_RECORD = "persist-record"
    DISABLE_AUTOSCALING = "disable-autoscaling"
    CORDON = "cordon"
    EVICT = "evict"
    UPGRADE = "upgrade-node-image"
    RESTORE = "restore-scaling"
    UNCORDON = "uncordon"
    DELETE_SURGE = "delete-surge"
    DELETE_RECORD = "delete-record"


@dataclass
class Action:
    """One mutation the executor performs."""
    kind: ActionKind
    pool: Optional[str] = None
    source: Optional[str] = None
    target: Optional[Pool] = field(default=None, repr=False)
    pods: List[PodInfo] = field(default_factory=list)
    scaling: Optional[ScalingConfig] = None
    snapshot: Dict[str, ScalingConfig] = field(default_factory=dict)

    def describe(self) -> str:
        if self.kind is ActionKind.CREATE_SURGE:
            return f"create {self.pool} from {self.source}"
        if self.kind is ActionKind.PERSIST_RECORD:
            return ", ".join(f"{name}: {config.describe()}" for name, config in self.snapshot.items())
        if self.kind is ActionKind.EVICT:
            return ", ".join(pod.key for pod in self.pods)
        if self.kind is ActionKind.RESTORE and self.scaling is not None:
            return f"{self.pool}: {self.scaling.describe()}"
        return self.pool or ""


@dataclass
class ReconcilePlan:
    outcome: Outcome
    reason: str
    actions: List[Action] = field(default_factory=list)

    def kinds(self) -> List[ActionKind]:
        return [action.kind for action in self.actions]


@dataclass
class WorldState:
    """What one pass observed for a campaign."""
    campaign: Campaign
    pools: Dict[str, Pool] = field(default_factory=dict)
    nodes: Dict[str, List[NodeInfo]] = field(default_factory=dict)
    outdated_nodes: Dict[str, NodeInfo] = field(default_factory=dict)
    outdated_pools: Dict[str, Pool] = field(default_factory=dict)
    surge: Optional[Pool] = None
    surge_nodes: List[NodeInfo] = field(default_factory=list)
    # None when no record exists.
    record: Optional[Dict[str, ScalingConfig]] = None
    pods: List[PodInfo] = field(default_factory=list)
    evictable: List[PodInfo] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return not self.outdated_nodes and not self.outdated_pools


def _drain_actions(
    world: WorldState, pool: Pool, nodes: List[NodeInfo], evicting: Set[str]
) -> List[Action]:
    actions = [Action(ActionKind.DISABLE_AUTOSCALING, pool=pool.name, target=pool)]
    if any(not node.unschedulable for node in nodes):
        actions.append(Action(ActionKind.CORDON, pool=pool.name))
    pods = SafeEvictionPipeline.restrict_to_nodes(world.evictable, nodes)
    if pods:
        actions.append(Action(ActionKind.EVICT, pool=pool.name, pods=pods))
        evicting.update(pod.key for pod in pods)
    return actions


def _blocking_pods(world: WorldState, nodes: List[NodeInfo], evicting: Set[str]) -> List[PodInfo]:
    """Guarded pods on ``nodes`` that this pass does not evict."""
    namespaces = world.campaign.spec.namespaces
    return [pod for pod in guarded_pods_on(world.pods, nodes, namespaces) if pod.key not in evicting]


def _upgrade_actions(world: WorldState, evicting: Set[str]) -> List[Action]:
    """At most one node image upgrade, for the first drained outdated pool.

    A pool that failed its last operation is retried; only a rollout already
    in flight holds back the next one.
    """
    in_flight = [pool.name for pool in world.pools.values() if pool.provisioning_state in UPGRADE_IN_FLIGHT]
    if in_flight:
        logger.info("Node image upgrade in progress on %s", ", ".join(in_flight))
        return []

    for name, pool in world.pools.items():
        if not pool.image_outdated:
            continue
        blocking = _blocking_pods(world, world.nodes.get(name, []), evicting)
        if blocking:
            logger.info("Pool %s still runs %d guarded pod(s)", name, len(blocking))
            continue
        return [Action(ActionKind.UPGRADE, pool=name)]
    return []


def _restore_actions(world: WorldState) -> List[Action]:
    actions: List[Action] = []
    for name, config in (world.record or {}).items():
        if name in world.outdated_pools:
            continue
        pool = world.pools.get(name)
        if pool is None:
            logger.warning("Recorded pool %s no longer exists, nothing to restore", name)
            continue
        nodes = world.nodes.get(name, [])
        if pool.matches(config) and all(not node.unschedulable for node in nodes):
            continue
        actions.append(Action(ActionKind.RESTORE, pool=name, scaling=config))
        actions.append(Action(ActionKind.UNCORDON, pool=name))
    return actions


def plan_reconcile(world: WorldState) -> ReconcilePlan:
    """Decide what one pass does, from the observed world alone.

    Raises:
        MalformedInputError: If an outdated pool's scaling cannot be captured
    """
    campaign = world.campaign
    surge_name = campaign.temporary_pool_name

    if world.surge is None:
        if world.converged:
            restores = _restore_actions(world)
            if restores:
                return ReconcilePlan(
                    Outcome.PROGRESS, "restoring scaling of recorded pools", restores
                )
            return ReconcilePlan(
                Outcome.STEADY,
                "all monitored pools are current",
                [Action(ActionKind.DELETE_RECORD, pool=campaign.scaling_record_name)],
            )
        return ReconcilePlan(
            Outcome.PROGRESS,
            f"{len(world.outdated_pools)} pool(s) outdated, temporary pool missing",
            [Action(ActionKind.CREATE_SURGE, pool=surge_name, source=campaign.spec.base_pool)],
        )

    surge_state = world.surge.provisioning_state
    if surge_state in (ProvisioningState.CREATING, ProvisioningState.DELETING):
        return ReconcilePlan(Outcome.PROGRESS, f"temporary pool {surge_name} is {surge_state.value}")

    actions: List[Action] = []
    if world.record is None and world.outdated_pools:
        snapshot = {name: pool.scaling for name, pool in world.outdated_pools.items()}
        actions.append(
            Action(ActionKind.PERSIST_RECORD, pool=campaign.scaling_record_name, snapshot=snapshot)
        )

    evicting: Set[str] = set()
    for name, pool in world.outdated_pools.items():
        actions.extend(_drain_actions(world, pool, world.nodes.get(name, []), evicting))

    actions.extend(_upgrade_actions(world, evicting))
    restores = _restore_actions(world)
    actions.extend(restores)

    if not world.converged:
        return ReconcilePlan(
            Outcome.PROGRESS, f"{len(world.outdated_pools)} pool(s) outdated", actions
        )

    actions.extend(_drain_actions(world, world.surge, world.surge_nodes, evicting))
    blocking = _blocking_pods(world, world.surge_nodes, evicting)
    if blocking:
        reason = f"draining temporary pool, {len(blocking)} guarded pod(s) left"
    elif restores:
        # The record is the only copy of the original scaling; keep it until every pool matches.
        pending = sum(1 for action in restores if action.kind is ActionKind.RESTORE)
        reason = f"waiting for {pending} pool(s) to match their scaling record"
    else:
        reason = "temporary pool drained"
        actions.append(Action(ActionKind.DELETE_SURGE, pool=surge_name))
        actions.append(Action(ActionKind.DELETE_RECORD, pool=campaign.scaling_record_name))
    return ReconcilePlan(Outcome.PROGRESS, reason, actions)


class ReconciliationEngine:
    """Drives a campaign one pass at a time."""

    def __init__(
        self,
        config: OperatorConfig,
        cluster: ClusterService,
        pools: AgentPoolService,
        registry: Optional[AgentRegistryService] = None,
    ):
        self.config = config
        self.cluster = cluster
        self.pools = pools
        self.staleness = StalenessDetector(cluster, pools)
        self.surge = SurgeCapacityManager(pools)
        self.eviction = SafeEvictionPipeline(cluster, registry)
        self._handlers: Dict[ActionKind, Callable[[Campaign, Action], None]] = {
            ActionKind.CREATE_SURGE: self._create_surge,
            ActionKind.PERSIST_RECORD: self._persist_record,
            ActionKind.DISABLE_AUTOSCALING: self._disable_autoscaling,
            ActionKind.CORDON: self._cordon,
            ActionKind.EVICT: self._evict,
            ActionKind.UPGRADE: self._upgrade,
            ActionKind.RESTORE: self._restore,
            ActionKind.UNCORDON: self._uncordon,
            ActionKind.DELETE_SURGE: self._delete_surge,
            ActionKind.DELETE_RECORD: self._delete_record,
        }

    def store(self, campaign: Campaign) -> ScalingStateStore:
        return ScalingStateStore(self.cluster, self.pools, campaign.namespace)

    def load_campaign(self, namespace: str, name: str) -> Campaign:
        body = self.cluster.get_campaign(namespace, name)
        return Campaign.from_body(name, namespace, body.get("spec") or {})

    def observe(self, campaign: Campaign) -> WorldState:
        surge_name = campaign.temporary_pool_name
        monitored = [name for name in campaign.spec.monitored_pools if name != surge_name]
        report = self.staleness.report(monitored)
        world = WorldState(
            campaign=campaign,
            pools=report.pools,
            nodes=report.nodes,
            outdated_nodes=report.outdated_nodes,
            outdated_pools=report.outdated_pools,
            surge=self.surge.get(surge_name),
        )
        try:
            world.record = self.store(campaign).get(campaign.scaling_record_name)
        except NotFoundError:
            world.record = None
        self._observe_recorded_pools(world)

        if world.surge is None or world.surge.provisioning_state in (
            ProvisioningState.CREATING,
            ProvisioningState.DELETING,
        ):
            return world

        world.surge_nodes = self.staleness.nodes_by_pool([surge_name])[surge_name]
        world.pods = self.cluster.list_pods()
        world.evictable = self.eviction.select_safe_to_evict(campaign.spec, world.pods)
        return world

    def _observe_recorded_pools(self, world: WorldState) -> None:
        """Add recorded pools the campaign no longer monitors, so they can still be restored."""
        missing = [name for name in world.record or {} if name not in world.pools]
        if not missing:
            return
        nodes = self.staleness.nodes_by_pool(missing)
        for name in missing:
            try:
                world.pools[name] = self.pools.get(name)
            except NotFoundError:
                continue
            world.nodes[name] = nodes[name]

    def apply(self, campaign: Campaign, plan: ReconcilePlan) -> None:
        """Run the plan's actions in order; the first failure stops the rest."""
        for action in plan.actions:
            logger.debug("Applying %s %s", action.kind.value, action.describe())
            self._handlers[action.kind](campaign, action)

    def delay_for(self, outcome: Outcome) -> float:
        if outcome is Outcome.STEADY:
            return self.config.steady_requeue_seconds
        if outcome is Outcome.ERROR:
            return self.config.error_requeue_seconds
        return self.config.progress_requeue_seconds

    def reconcile(self, campaign: Campaign) -> float:
        """Run one pass and return the number of seconds until the next one."""
        delay = self.delay_for(self.run_pass(campaign))
        logger.info("Next pass of %s/%s in %ss", campaign.namespace, campaign.name, delay)
        return delay

    def run_pass(self, campaign: Campaign) -> Outcome:
        """Observe, plan and apply once. Failures are logged and reported as ``Outcome.ERROR``."""
        logger.info("Reconciling %s/%s", campaign.namespace, campaign.name)
        try:
            world = self.observe(campaign)
            plan = plan_reconcile(world)
            logger.info(
                "%s/%s: %d outdated node(s), %d outdated pool(s), %s",
                campaign.namespace,
                campaign.name,
                len(world.outdated_nodes),
                len(world.outdated_pools),
                plan.reason,
            )
            self.apply(campaign, plan)
        except PreconditionError as exc:
            logger.info("%s/%s waiting: %s", campaign.namespace, campaign.name, exc)
            return Outcome.PROGRESS
        except NodeUpdaterError as exc:
            logger.error("Reconcile of %s/%s failed: %s", campaign.namespace, campaign.name, exc)
            return Outcome.ERROR
        return plan.outcome

    def _create_surge(self, campaign: Campaign, action: Action) -> None:
        self.surge.create(action.pool, action.source)

    def _persist_record(self, campaign: Campaign, action: Action) -> None:
        self.store(campaign).create_if_absent(action.pool, action.snapshot)

    def _disable_autoscaling(self, campaign: Campaign, action: Action) -> None:
        target = action.target if action.target is not None else self.pools.get(action.pool)
        self.surge.disable_autoscaling([target])

    def _cordon(self, campaign: Campaign, action: Action) -> None:
        self.eviction.cordon(action.pool, True)

    def _evict(self, campaign: Campaign, action: Action) -> None:
        self.eviction.evict(action.pods)

    def _upgrade(self, campaign: Campaign, action: Action) -> None:
        # Evictions earlier in the pass changed the pods; confirm against the live cluster.
        nodes = self.cluster.list_nodes(action.pool)
        if self.eviction.has_running_guarded_pods(nodes, campaign.spec.namespaces):
            logger.info("Pool %s still runs guarded pods, upgrade postponed", action.pool)
            return
        try:
            self.pools.begin_upgrade_node_image(action.pool)
        except RetryableError as exc:
            logger.info("Node image upgrade of %s deferred: %s", action.pool, exc)
            return
        logger.info("Started node image upgrade of pool %s", action.pool)

    def _restore(self, campaign: Campaign, action: Action) -> None:
        self.store(campaign).set_scaling(action.pool, action.scaling)

    def _uncordon(self, campaign: Campaign, action: Action) -> None:
        self.eviction.cordon(action.pool, False)

    def _delete_surge(self, campaign: Campaign, action: Action) -> None:
        self.surge.remove(action.pool)

    def _delete_record(self, campaign: Campaign, action: Action) -> None:
        self.store(campaign).delete(action.pool)
