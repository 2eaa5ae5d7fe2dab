"""
Async HTTP client for the platform endpoints the permission editor consumes.

Every call forwards the caller's bearer token. Transport failures never raise:
fetches come back empty and saves report ``False``.
"""
from typing import Any, Optional
import httpx
from pydantic import ValidationError

from app.core import config
from app.features.permissions.matrix import sanitize
from app.features.permissions.schemas import NavigationNode, PermissionSet
from app.utils import get_logger


log = get_logger(__name__)

NAVIGATION_PATH = "/api/navigation/get-by-role"
AGENT_PERMISSIONS_PATH = "/api/agent/permissions"
CLINIC_PERMISSIONS_PATH = "/api/clinic/permissions"


class PlatformClient:
    """HTTP client for navigation and permission endpoints of the platform API."""

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or config.PLATFORM_API_URL
        self.timeout = timeout if timeout is not None else config.PLATFORM_API_TIMEOUT
        self._token = token
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self._token}"},
            transport=self._transport,
        )

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            log.warning("GET %s failed: %s", path, e)
            return None
        except ValueError:
            log.warning("GET %s returned a non-JSON body", path)
            return None
        if not isinstance(body, dict) or not body.get("success"):
            log.info("GET %s returned no data", path)
            return None
        return body

    async def fetch_navigation(self, role: str) -> list[NavigationNode]:
        """Navigation tree for a role; malformed nodes are skipped."""
        body = await self._get_json(NAVIGATION_PATH, params={"role": role})
        items = body.get("data") if body else None
        if not isinstance(items, list):
            return []

        nodes = []
        for item in items:
            try:
                nodes.append(NavigationNode.model_validate(item))
            except ValidationError as e:
                log.warning("Skipping malformed navigation item: %s", e.errors()[0].get("msg", e))
        return sorted(nodes, key=lambda node: node.order)

    @staticmethod
    def _extract_permissions(body: Optional[dict]) -> Any:
        data = body.get("data") if body else None
        if not isinstance(data, dict):
            return None
        return data.get("permissions")

    async def fetch_agent_permissions(self, agent_id: str) -> PermissionSet:
        """Stored permission set of an agent; empty when absent."""
        body = await self._get_json(AGENT_PERMISSIONS_PATH, params={"agentId": agent_id})
        return sanitize(self._extract_permissions(body))

    async def fetch_actor_permissions(self) -> Optional[PermissionSet]:
        """The calling clinic's own permission set, or None when unavailable."""
        body = await self._get_json(CLINIC_PERMISSIONS_PATH)
        raw = self._extract_permissions(body)
        if raw is None:
            return None
        return sanitize(raw)

    async def save_agent_permissions(self, agent_id: str, permissions: PermissionSet) -> bool:
        """Persist an agent's full permission set. Returns whether the platform accepted it."""
        payload = {
            "agentId": agent_id,
            "permissions": [perm.model_dump(mode="json", by_alias=True) for perm in permissions],
        }
        try:
            async with self._client() as client:
                response = await client.post(AGENT_PERMISSIONS_PATH, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            log.warning("Saving permissions for agent %s failed: %s", agent_id, e)
            return False
        except ValueError:
            log.warning("Saving permissions for agent %s returned a non-JSON body", agent_id)
            return False
        return isinstance(body, dict) and bool(body.get("success"))
