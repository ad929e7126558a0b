"""Credential loading for the Kubernetes API and the Azure control plane."""

import logging
from typing import Any, Optional

from azure.identity import DefaultAzureCredential
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from .errors import ConfigurationError
from .utils.config import OperatorConfig

logger = logging.getLogger(__name__)


class ClusterAuthenticator:
    """Handle authentication against the cluster and Azure."""

    def __init__(self, operator_config: OperatorConfig):
        self.config = operator_config
        self._api_client: Optional[client.ApiClient] = None
        self._credential: Optional[Any] = None

    def kubernetes_client(self) -> client.ApiClient:
        """
        Build a Kubernetes API client.

        Uses the configured kubeconfig when one is set, the in-cluster service
        account otherwise, and the default kubeconfig as the last resort.

        Raises:
            ConfigurationError: If no usable configuration is found
        """
        if self._api_client is not None:
            return self._api_client

        configuration = client.Configuration()
        try:
            if self.config.kubeconfig:
                config.load_kube_config(
                    config_file=self.config.kubeconfig, client_configuration=configuration
                )
                logger.debug("Loaded kubeconfig from %s", self.config.kubeconfig)
            else:
                try:
                    config.load_incluster_config(client_configuration=configuration)
                    logger.debug("Loaded in-cluster Kubernetes configuration")
                except ConfigException:
                    config.load_kube_config(client_configuration=configuration)
                    logger.debug("Loaded default kubeconfig")
        except ConfigException as exc:
            raise ConfigurationError(f"No usable Kubernetes configuration: {exc}") from exc

        self._api_client = client.ApiClient(configuration)
        return self._api_client

    def azure_credential(self) -> Any:
        """Azure credential chain: workload identity, managed identity, CLI login."""
        if self._credential is None:
            self._credential = DefaultAzureCredential()
        return self._credential
