from unittest.mock import Mock, patch

import pytest
from kubernetes.config.config_exception import ConfigException

from node_updater.auth import ClusterAuthenticator
from node_updater.client import NodeUpdaterClient
from node_updater.errors import ConfigurationError
from node_updater.reconciler import ReconciliationEngine
from node_updater.utils.config import OperatorConfig


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig(
        subscription_id="sub-id",
        resource_group="rg-aks",
        cluster_name="aks-prod",
        devops_organization="contoso",
        devops_token="secret",
    )


@pytest.fixture
def authenticator() -> Mock:
    authenticator = Mock(spec=ClusterAuthenticator)
    authenticator.kubernetes_client.return_value = Mock(name="api_client")
    authenticator.azure_credential.return_value = Mock(name="credential")
    return authenticator


@patch("node_updater.auth.config")
def test_kubeconfig_from_settings_is_preferred(mock_config, config) -> None:
    config.kubeconfig = "/etc/kube/config"

    ClusterAuthenticator(config).kubernetes_client()

    mock_config.load_kube_config.assert_called_once()
    assert mock_config.load_kube_config.call_args.kwargs["config_file"] == "/etc/kube/config"
    mock_config.load_incluster_config.assert_not_called()


@patch("node_updater.auth.config")
def test_falls_back_to_default_kubeconfig_outside_cluster(mock_config, config) -> None:
    mock_config.load_incluster_config.side_effect = ConfigException("not in cluster")

    authenticator = ClusterAuthenticator(config)
    first = authenticator.kubernetes_client()

    mock_config.load_kube_config.assert_called_once()
    assert authenticator.kubernetes_client() is first


@patch("node_updater.auth.config")
def test_no_kubernetes_configuration_is_a_configuration_error(mock_config, config) -> None:
    mock_config.load_incluster_config.side_effect = ConfigException("not in cluster")
    mock_config.load_kube_config.side_effect = ConfigException("no kubeconfig")

    with pytest.raises(ConfigurationError):
        ClusterAuthenticator(config).kubernetes_client()


@patch("node_updater.client.client")
def test_kubernetes_apis_are_created_lazily_once(mock_client, config, authenticator) -> None:
    node_updater = NodeUpdaterClient(config, authenticator)
    authenticator.kubernetes_client.assert_not_called()

    first = node_updater.core_v1
    second = node_updater.core_v1

    assert first is second
    mock_client.CoreV1Api.assert_called_once_with(authenticator.kubernetes_client.return_value)


@patch("node_updater.client.ContainerServiceClient")
def test_container_service_uses_subscription(mock_container_service, config, authenticator) -> None:
    NodeUpdaterClient(config, authenticator).container_service

    mock_container_service.assert_called_once_with(
        authenticator.azure_credential.return_value, "sub-id"
    )


@patch("node_updater.client.ContainerServiceClient")
def test_agent_pool_service_targets_configured_cluster(mock_container_service, config, authenticator) -> None:
    service = NodeUpdaterClient(config, authenticator).agent_pool_service()

    assert service.resource_group == "rg-aks"
    assert service.cluster_name == "aks-prod"
    assert service.agent_pools is mock_container_service.return_value.agent_pools


def test_agent_registry_service_requires_credentials(config, authenticator) -> None:
    registry = NodeUpdaterClient(config, authenticator).agent_registry_service()
    assert registry is not None
    assert registry.session.auth == ("", "secret")

    config.devops_token = ""
    assert NodeUpdaterClient(config, authenticator).agent_registry_service() is None


@patch("node_updater.client.ContainerServiceClient")
@patch("node_updater.client.client")
def test_engine_is_built_once(mock_client, mock_container_service, config, authenticator) -> None:
    node_updater = NodeUpdaterClient(config, authenticator)

    engine = node_updater.engine

    assert isinstance(engine, ReconciliationEngine)
    assert node_updater.engine is engine
    assert engine.config is config
