"""Adapters for the Kubernetes API, the AKS control plane and the agent registry."""

from .agent_pools import AgentPoolService
from .cluster import ClusterService
from .devops import AgentRegistryService

__all__ = ["AgentPoolService", "ClusterService", "AgentRegistryService"]
