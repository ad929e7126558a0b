from unittest.mock import Mock

import pytest
import requests
from tenacity import wait_none

from node_updater.errors import NotFoundError, TransportError
from node_updater.services.devops import AgentRegistryService

POOLS_URL = "https://dev.azure.com/org/_apis/distributedtask/pools"


def _response(status: int = 200, payload=None) -> Mock:
    response = Mock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    return response


def _pools() -> Mock:
    return _response(payload={"value": [{"id": 7, "name": "linux-agents"}, {"id": 8, "name": "win"}]})


def _agents() -> Mock:
    return _response(payload={"value": [{"id": "42", "name": "agent-1"}]})


@pytest.fixture
def registry() -> AgentRegistryService:
    return AgentRegistryService(Mock(), "org", "token", timeout=5)


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(AgentRegistryService._list_values.retry, "wait", wait_none())


def test_session_uses_token_basic_auth(registry: AgentRegistryService) -> None:
    assert registry.session.auth == ("", "token")


def test_disable_agent_patches_enabled_flag(registry: AgentRegistryService) -> None:
    registry.session.get.side_effect = [_pools(), _agents()]
    registry.session.patch.return_value = _response()

    registry.disable_agent("linux-agents", "agent-1")

    first_url = registry.session.get.call_args_list[0].args[0]
    second_url = registry.session.get.call_args_list[1].args[0]
    assert first_url == POOLS_URL
    assert second_url == f"{POOLS_URL}/7/agents"
    registry.session.patch.assert_called_once_with(
        f"{POOLS_URL}/7/agents/42",
        params={"api-version": "7.1-preview.1"},
        json={"id": 42, "enabled": False},
        timeout=5,
    )


@pytest.mark.parametrize("status", [200, 204])
def test_remove_agent_accepts_success_statuses(registry: AgentRegistryService, status: int) -> None:
    registry.session.get.side_effect = [_pools(), _agents()]
    registry.session.delete.return_value = _response(status)

    registry.remove_agent("linux-agents", "agent-1")

    assert registry.session.delete.call_args.args[0] == f"{POOLS_URL}/7/agents/42"


def test_unknown_pool_is_not_found(registry: AgentRegistryService) -> None:
    registry.session.get.return_value = _pools()

    with pytest.raises(NotFoundError):
        registry.disable_agent("missing", "agent-1")
    registry.session.patch.assert_not_called()


def test_unknown_agent_is_not_found(registry: AgentRegistryService) -> None:
    registry.session.get.side_effect = [_pools(), _agents()]

    with pytest.raises(NotFoundError):
        registry.remove_agent("linux-agents", "agent-2")
    registry.session.delete.assert_not_called()


def test_non_success_status_is_transport_error(registry: AgentRegistryService) -> None:
    registry.session.get.side_effect = [_pools(), _agents()]
    registry.session.patch.return_value = _response(401)

    with pytest.raises(TransportError) as excinfo:
        registry.disable_agent("linux-agents", "agent-1")
    assert excinfo.value.status == 401


def test_lookup_status_failure_is_not_retried(registry: AgentRegistryService) -> None:
    registry.session.get.return_value = _response(500)

    with pytest.raises(TransportError):
        registry.pool_id("linux-agents")
    assert registry.session.get.call_count == 1


def test_lookup_retries_connection_errors(registry: AgentRegistryService) -> None:
    registry.session.get.side_effect = [requests.ConnectionError("reset"), _pools()]

    assert registry.pool_id("linux-agents") == 7
    assert registry.session.get.call_count == 2


def test_lookup_gives_up_after_three_attempts(registry: AgentRegistryService) -> None:
    registry.session.get.side_effect = requests.Timeout("slow")

    with pytest.raises(TransportError):
        registry.pool_id("linux-agents")
    assert registry.session.get.call_count == 3
