import pytest

from node_updater.errors import NotFoundError, TransportError
from node_updater.models import PoolMode, ProvisioningState
from node_updater.surge import SurgeCapacityManager

from .fakes import FakeAgentPools, make_pool


@pytest.fixture
def pools() -> FakeAgentPools:
    pools = FakeAgentPools()
    pools.add(make_pool("poolb", count=2, min_count=1, max_count=4))
    return pools


def test_exists_maps_not_found_to_false(pools) -> None:
    manager = SurgeCapacityManager(pools)

    assert manager.exists("poolb")
    assert not manager.exists("tmppoolb")
    assert manager.get("tmppoolb") is None


def test_create_clones_base_pool_and_returns_while_creating(pools) -> None:
    manager = SurgeCapacityManager(pools)

    manager.create("tmppoolb", "poolb")

    assert pools.calls == [("create", "tmppoolb", "poolb")]
    assert manager.provisioning_state("tmppoolb") is ProvisioningState.CREATING
    assert pools.pools["tmppoolb"].max_count == 4


def test_create_from_missing_base_pool_fails(pools) -> None:
    with pytest.raises(NotFoundError):
        SurgeCapacityManager(pools).create("tmpother", "other")


def test_disable_autoscaling_pins_current_count(pools) -> None:
    manager = SurgeCapacityManager(pools)

    manager.disable_autoscaling([pools.get("poolb")])

    stored = pools.pools["poolb"]
    assert stored.enable_auto_scaling is False
    assert stored.count == 2
    assert stored.min_count is None


def test_disable_autoscaling_skips_system_and_busy_pools(pools) -> None:
    system = pools.add(make_pool("system", mode=PoolMode.SYSTEM, min_count=1, max_count=3))
    busy = pools.add(make_pool("busy", state=ProvisioningState.UPGRADING_NODE_IMAGE, min_count=1, max_count=3))

    SurgeCapacityManager(pools).disable_autoscaling([system, busy])

    assert pools.calls == []


def test_disable_autoscaling_is_noop_for_fixed_pool(pools) -> None:
    fixed = pools.add(make_pool("fixed", count=3))

    SurgeCapacityManager(pools).disable_autoscaling([fixed])

    assert pools.calls == []


def test_disable_autoscaling_treats_conflict_as_success(pools) -> None:
    pools.conflicts.add("poolb")

    SurgeCapacityManager(pools).disable_autoscaling([pools.get("poolb")])

    assert pools.calls == [("update_scaling", "poolb", "fixed 2")]


def test_disable_autoscaling_propagates_other_errors(pools) -> None:
    def broken(pool, config):
        raise TransportError("create or update agent pool 'poolb': 500", status=500)

    pools.begin_update_scaling = broken

    with pytest.raises(TransportError):
        SurgeCapacityManager(pools).disable_autoscaling([pools.get("poolb")])


def test_remove_submits_delete(pools) -> None:
    SurgeCapacityManager(pools).remove("poolb")

    assert pools.pools["poolb"].provisioning_state is ProvisioningState.DELETING
