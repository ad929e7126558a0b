from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError, ServiceRequestError

from node_updater.errors import MalformedInputError, NotFoundError, RetryableError, TransportError
from node_updater.models import PoolMode, ProvisioningState, ScalingConfig
from node_updater.services.agent_pools import AgentPoolService, parse_agent_pool


def _agent_pool(**overrides) -> SimpleNamespace:
    values = dict(
        name="poola",
        mode="User",
        provisioning_state="Succeeded",
        count=3,
        min_count=2,
        max_count=5,
        enable_auto_scaling=True,
        vm_size="Standard_D4s_v5",
        vnet_subnet_id="/subscriptions/sub/subnets/agents",
        orchestrator_version="1.30.4",
        node_labels={"workload": "agents"},
        node_taints=["agents=true:NoSchedule"],
        os_type="Linux",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _http_error(status: int) -> HttpResponseError:
    error = HttpResponseError(message=f"status {status}")
    error.status_code = status
    return error


@pytest.fixture
def service() -> AgentPoolService:
    return AgentPoolService(Mock(), "rg-aks", "aks-prod")


def test_get_parses_sdk_object(service: AgentPoolService) -> None:
    service.agent_pools.get.return_value = _agent_pool(mode="System")

    pool = service.get("poola")

    service.agent_pools.get.assert_called_once_with("rg-aks", "aks-prod", "poola")
    assert pool.mode is PoolMode.SYSTEM
    assert pool.provisioning_state is ProvisioningState.SUCCEEDED
    assert pool.scaling == ScalingConfig.autoscaled(2, 5)


def test_enum_valued_fields_are_read_by_value() -> None:
    mode = SimpleNamespace(value="System")
    pool = parse_agent_pool("poola", _agent_pool(mode=mode, provisioning_state="Creating"))

    assert pool.is_system
    assert pool.provisioning_state is ProvisioningState.CREATING


@pytest.mark.parametrize(
    "exc, error",
    [
        (ResourceNotFoundError("gone"), NotFoundError),
        (_http_error(404), NotFoundError),
        (_http_error(409), RetryableError),
        (_http_error(500), TransportError),
        (ServiceRequestError("connection reset"), TransportError),
    ],
)
def test_get_translates_azure_errors(service: AgentPoolService, exc: Exception, error: type) -> None:
    service.agent_pools.get.side_effect = exc

    with pytest.raises(error):
        service.get("poola")


def test_latest_node_image_version(service: AgentPoolService) -> None:
    service.agent_pools.get_upgrade_profile.return_value = SimpleNamespace(
        latest_node_image_version="AKSUbuntu-2204gen2containerd-202410.09.0"
    )

    assert service.latest_node_image_version("poola") == "AKSUbuntu-2204gen2containerd-202410.09.0"


def test_missing_latest_node_image_version_is_malformed(service: AgentPoolService) -> None:
    service.agent_pools.get_upgrade_profile.return_value = SimpleNamespace(latest_node_image_version=None)

    with pytest.raises(MalformedInputError):
        service.latest_node_image_version("poola")


def test_create_clone_copies_base_profile(service: AgentPoolService) -> None:
    base = parse_agent_pool("poolb", _agent_pool(name="poolb"))

    service.begin_create_clone("tmppoolb", base)

    args = service.agent_pools.begin_create_or_update.call_args.args
    assert args[:3] == ("rg-aks", "aks-prod", "tmppoolb")
    created = args[3]
    assert created.vm_size == base.raw.vm_size
    assert created.vnet_subnet_id == base.raw.vnet_subnet_id
    assert created.node_taints == ["agents=true:NoSchedule"]
    assert created.min_count == 2
    assert created.max_count == 5
    assert created.enable_auto_scaling is True


def test_update_scaling_to_fixed_count_leaves_original_untouched(service: AgentPoolService) -> None:
    pool = parse_agent_pool("poola", _agent_pool())

    service.begin_update_scaling(pool, ScalingConfig.fixed(3))

    sent = service.agent_pools.begin_create_or_update.call_args.args[3]
    assert sent.enable_auto_scaling is False
    assert sent.min_count is None
    assert sent.max_count is None
    assert sent.count == 3
    assert pool.raw.enable_auto_scaling is True


def test_update_scaling_restores_autoscale_bounds(service: AgentPoolService) -> None:
    pool = parse_agent_pool("poola", _agent_pool(enable_auto_scaling=False, min_count=None, max_count=None))

    service.begin_update_scaling(pool, ScalingConfig.autoscaled(2, 5))

    sent = service.agent_pools.begin_create_or_update.call_args.args[3]
    assert sent.enable_auto_scaling is True
    assert (sent.min_count, sent.max_count) == (2, 5)


def test_update_conflict_is_retryable(service: AgentPoolService) -> None:
    service.agent_pools.begin_create_or_update.side_effect = _http_error(409)
    pool = parse_agent_pool("poola", _agent_pool())

    with pytest.raises(RetryableError):
        service.begin_update_scaling(pool, ScalingConfig.fixed(3))


def test_upgrade_and_delete_submit_long_running_operations(service: AgentPoolService) -> None:
    service.begin_upgrade_node_image("poola")
    service.begin_delete("tmppoolb")

    service.agent_pools.begin_upgrade_node_image_version.assert_called_once_with("rg-aks", "aks-prod", "poola")
    service.agent_pools.begin_delete.assert_called_once_with("rg-aks", "aks-prod", "tmppoolb")
