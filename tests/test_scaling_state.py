import json

import pytest

from node_updater.errors import MalformedInputError, NotFoundError, PreconditionError
from node_updater.models import ProvisioningState, ScalingConfig
from node_updater.scaling_state import ScalingStateStore

from .fakes import FakeAgentPools, FakeCluster, make_node, make_pool

NAMESPACE = "node-updater"


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def pools() -> FakeAgentPools:
    pools = FakeAgentPools()
    pools.add(make_pool("poola", count=3))
    return pools


@pytest.fixture
def store(cluster, pools) -> ScalingStateStore:
    return ScalingStateStore(cluster, pools, NAMESPACE)


def test_get_missing_record_raises_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.get("tmpagents")


def test_create_if_absent_writes_snapshot_once(store, cluster) -> None:
    first = {"poola": ScalingConfig.autoscaled(2, 5)}
    second = {"poola": ScalingConfig.fixed(3), "poolc": ScalingConfig.fixed(1)}

    assert store.create_if_absent("tmpagents", first) is True
    assert store.create_if_absent("tmpagents", second) is False

    assert store.get("tmpagents") == first
    assert json.loads(cluster.config_maps[(NAMESPACE, "tmpagents")]["poola"]) == {"MinCount": 2, "MaxCount": 5}


def test_concurrent_create_keeps_existing_record(store, cluster) -> None:
    def not_yet_visible(namespace, name):
        raise NotFoundError("read ConfigMap: not found")

    cluster.get_config_map = not_yet_visible
    cluster.config_maps[(NAMESPACE, "tmpagents")] = {"poola": '{"Count": 3}'}

    assert store.create_if_absent("tmpagents", {"poola": ScalingConfig.fixed(9)}) is False
    assert cluster.config_maps[(NAMESPACE, "tmpagents")] == {"poola": '{"Count": 3}'}


def test_delete_is_idempotent(store, cluster) -> None:
    store.create_if_absent("tmpagents", {"poola": ScalingConfig.fixed(3)})

    store.delete("tmpagents")
    store.delete("tmpagents")

    assert (NAMESPACE, "tmpagents") not in cluster.config_maps


def test_malformed_record_is_surfaced(store, cluster) -> None:
    cluster.config_maps[(NAMESPACE, "tmpagents")] = {"poola": "{broken"}

    with pytest.raises(MalformedInputError):
        store.get("tmpagents")


def test_set_scaling_restores_autoscale_bounds(store, pools, cluster) -> None:
    cluster.add_node(make_node("a-0", "poola", "v2", unschedulable=True))
    store.create_if_absent("tmpagents", {"poola": ScalingConfig.autoscaled(2, 5)})

    record = store.get("tmpagents")
    assert store.set_scaling("poola", record["poola"]) is True

    pool = pools.pools["poola"]
    assert pool.enable_auto_scaling is True
    assert (pool.min_count, pool.max_count) == (2, 5)


def test_set_scaling_is_noop_when_already_matching(store, pools) -> None:
    assert store.set_scaling("poola", ScalingConfig.fixed(3)) is False
    assert pools.calls == []


def test_set_scaling_on_busy_pool_is_precondition_failure(store, pools) -> None:
    pools.pools["poola"].provisioning_state = ProvisioningState.UPDATING

    with pytest.raises(PreconditionError):
        store.set_scaling("poola", ScalingConfig.autoscaled(2, 5))


def test_set_scaling_conflict_counts_as_success(store, pools) -> None:
    pools.conflicts.add("poola")

    assert store.set_scaling("poola", ScalingConfig.autoscaled(2, 5)) is False
    assert pools.calls == [("update_scaling", "poola", "autoscale 2-5")]
