"""Azure DevOps agent registry client.

Build agents running as pods register themselves in an Azure DevOps agent
pool. Before such a pod is evicted its agent is disabled, so no new job gets
scheduled on it, and then removed from the pool.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import MalformedInputError, NotFoundError, TransportError

logger = logging.getLogger(__name__)

API_VERSION = "7.1-preview.1"
BASE_URL = "https://dev.azure.com"


class AgentRegistryService:
    """Service class for Azure DevOps agent pools and agents."""

    def __init__(
        self,
        session: requests.Session,
        organization: str,
        token: str,
        timeout: Optional[float] = None,
    ):
        self.session = session
        self.organization = organization
        self.timeout = timeout
        # PAT authentication uses an empty user name.
        self.session.auth = ("", token)

    def _url(self, path: str) -> str:
        return f"{BASE_URL}/{self.organization}/_apis/distributedtask/{path}"

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _list_values(self, path: str) -> List[Dict[str, Any]]:
        response = self.session.get(
            self._url(path), params={"api-version": API_VERSION}, timeout=self.timeout
        )
        if response.status_code != 200:
            raise TransportError(
                f"GET {path} returned status {response.status_code}", status=response.status_code
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedInputError(f"GET {path} returned invalid JSON") from exc
        return payload.get("value") or []

    def _lookup(self, path: str) -> List[Dict[str, Any]]:
        try:
            return self._list_values(path)
        except requests.RequestException as exc:
            logger.error("Agent registry request %s failed: %s", path, exc)
            raise TransportError(f"GET {path} failed: {exc}") from exc

    @staticmethod
    def _find_id(values: List[Dict[str, Any]], name: str) -> Optional[int]:
        for item in values:
            if item.get("name") == name:
                try:
                    return int(item["id"])
                except (KeyError, TypeError, ValueError) as exc:
                    raise MalformedInputError(f"Entry '{name}' has no usable id") from exc
        return None

    def pool_id(self, pool_name: str) -> int:
        pool_id = self._find_id(self._lookup("pools"), pool_name)
        if pool_id is None:
            logger.error("Agent pool %s not found in organization %s", pool_name, self.organization)
            raise NotFoundError(f"Agent pool '{pool_name}' not found")
        return pool_id

    def agent_id(self, pool_id: int, agent_name: str) -> int:
        agent_id = self._find_id(self._lookup(f"pools/{pool_id}/agents"), agent_name)
        if agent_id is None:
            logger.error("Agent %s not found in pool %s", agent_name, pool_id)
            raise NotFoundError(f"Agent '{agent_name}' not found in pool {pool_id}")
        return agent_id

    def disable_agent(self, pool_name: str, agent_name: str) -> None:
        """Stop the agent from picking up new jobs."""
        pool_id = self.pool_id(pool_name)
        agent_id = self.agent_id(pool_id, agent_name)
        path = f"pools/{pool_id}/agents/{agent_id}"
        try:
            response = self.session.patch(
                self._url(path),
                params={"api-version": API_VERSION},
                json={"id": agent_id, "enabled": False},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"PATCH {path} failed: {exc}") from exc
        if response.status_code != 200:
            logger.error("Failed to disable agent %s: status %s", agent_name, response.status_code)
            raise TransportError(
                f"PATCH {path} returned status {response.status_code}", status=response.status_code
            )
        logger.debug("Disabled agent %s in pool %s", agent_name, pool_name)

    def remove_agent(self, pool_name: str, agent_name: str) -> None:
        pool_id = self.pool_id(pool_name)
        agent_id = self.agent_id(pool_id, agent_name)
        path = f"pools/{pool_id}/agents/{agent_id}"
        try:
            response = self.session.delete(
                self._url(path), params={"api-version": API_VERSION}, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise TransportError(f"DELETE {path} failed: {exc}") from exc
        if response.status_code not in (200, 204):
            logger.error("Failed to remove agent %s: status %s", agent_name, response.status_code)
            raise TransportError(
                f"DELETE {path} returned status {response.status_code}", status=response.status_code
            )
        logger.debug("Removed agent %s from pool %s", agent_name, pool_name)
