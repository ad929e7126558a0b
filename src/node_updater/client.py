"""Wiring of API clients, service adapters and the reconciliation engine."""

import logging
from typing import Optional

import requests
from azure.mgmt.containerservice import ContainerServiceClient
from kubernetes import client

from .auth import ClusterAuthenticator
from .reconciler import ReconciliationEngine
from .services import AgentPoolService, AgentRegistryService, ClusterService
from .utils.config import OperatorConfig

logger = logging.getLogger(__name__)


class NodeUpdaterClient:
    """Holds the configuration and lazily builds every client the operator talks through."""

    def __init__(self, config: OperatorConfig, authenticator: Optional[ClusterAuthenticator] = None):
        self.config = config
        self.authenticator = authenticator or ClusterAuthenticator(config)

        # Service clients will be initialized lazily
        self._core_v1: Optional[client.CoreV1Api] = None
        self._batch_v1: Optional[client.BatchV1Api] = None
        self._custom_objects: Optional[client.CustomObjectsApi] = None
        self._container_service: Optional[ContainerServiceClient] = None
        self._session: Optional[requests.Session] = None
        self._engine: Optional[ReconciliationEngine] = None

    @property
    def core_v1(self) -> client.CoreV1Api:
        if not self._core_v1:
            self._core_v1 = client.CoreV1Api(self.authenticator.kubernetes_client())
        return self._core_v1

    @property
    def batch_v1(self) -> client.BatchV1Api:
        if not self._batch_v1:
            self._batch_v1 = client.BatchV1Api(self.authenticator.kubernetes_client())
        return self._batch_v1

    @property
    def custom_objects(self) -> client.CustomObjectsApi:
        if not self._custom_objects:
            self._custom_objects = client.CustomObjectsApi(self.authenticator.kubernetes_client())
        return self._custom_objects

    @property
    def container_service(self) -> ContainerServiceClient:
        """Lazy-load the AKS management client."""
        if not self._container_service:
            self._container_service = ContainerServiceClient(
                self.authenticator.azure_credential(), self.config.subscription_id
            )
        return self._container_service

    @property
    def session(self) -> requests.Session:
        if not self._session:
            self._session = requests.Session()
        return self._session

    def cluster_service(self) -> ClusterService:
        return ClusterService(
            self.core_v1,
            self.batch_v1,
            self.custom_objects,
            request_timeout=self.config.request_timeout_seconds,
        )

    def agent_pool_service(self) -> AgentPoolService:
        return AgentPoolService(
            self.container_service.agent_pools, self.config.resource_group, self.config.cluster_name
        )

    def agent_registry_service(self) -> Optional[AgentRegistryService]:
        """The Azure DevOps client, or None when no organization and token are configured."""
        if not self.config.has_devops_credentials():
            logger.warning("Azure DevOps credentials not configured; idle pods cannot be evicted")
            return None
        return AgentRegistryService(
            self.session,
            self.config.devops_organization,
            self.config.devops_token,
            timeout=self.config.request_timeout_seconds,
        )

    @property
    def engine(self) -> ReconciliationEngine:
        if not self._engine:
            self._engine = ReconciliationEngine(
                self.config,
                self.cluster_service(),
                self.agent_pool_service(),
                self.agent_registry_service(),
            )
        return self._engine
