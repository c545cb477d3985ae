"""Rule resolver backed by a remote permission decision endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from xrd_catalog.permissions.context import CallerContext
from xrd_catalog.permissions.rules import RESOURCE_TYPE, PermissionDecision
from xrd_catalog.utils.errors import PermissionResolutionError

if TYPE_CHECKING:
    from xrd_catalog.config import CatalogConfig

logger = logging.getLogger(__name__)

PERMISSION_NAME = "catalog.entity.read"


class RemoteRuleResolver:
    """Asks a decision service which rule applies to a caller.

    The service receives the caller context and answers with
    ``{"result": "ALLOW" | "DENY" | "CONDITIONAL", "conditions": {...}}``.

    Usage:
        resolver = RemoteRuleResolver("https://authz.example/decide")
        decision = await resolver.resolve(caller)
        await resolver.close()
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            url: Decision endpoint URL.
            timeout: Request timeout in seconds.
            headers: Extra request headers (e.g. service credentials).
            transport: Optional httpx transport, used by tests.
        """
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: CatalogConfig) -> RemoteRuleResolver:
        if not config.permission_service_url:
            raise ValueError("permission_service_url is not configured")
        return cls(config.permission_service_url, timeout=config.permission_service_timeout)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _payload(self, caller: CallerContext) -> dict[str, Any]:
        return {
            "permission": {"name": PERMISSION_NAME, "resourceType": RESOURCE_TYPE},
            "userEntityRef": caller.user_entity_ref,
            "ownershipEntityRefs": list(caller.ownership_entity_refs),
            "claims": caller.claims,
        }

    async def resolve(self, caller: CallerContext) -> PermissionDecision:
        """Fetch the decision for a caller.

        Raises:
            PermissionResolutionError: If the service cannot be reached or
                answers with something that is not a valid decision.
        """
        client = await self._get_client()
        try:
            response = await client.post(self._url, json=self._payload(caller))
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            raise PermissionResolutionError(
                f"Failed to connect to permission service at {self._url}: {e}"
            ) from e
        except httpx.TimeoutException as e:
            raise PermissionResolutionError(
                f"Timeout contacting permission service at {self._url}: {e}"
            ) from e
        except httpx.HTTPStatusError as e:
            raise PermissionResolutionError(f"Permission service rejected request: {e}") from e
        except httpx.HTTPError as e:
            raise PermissionResolutionError(
                f"Error talking to permission service at {self._url}: {e}"
            ) from e
        except ValueError as e:
            raise PermissionResolutionError("Permission service returned invalid JSON") from e

        decision = PermissionDecision.from_wire(data)
        logger.debug(f"Permission decision for {caller.user_entity_ref}: {decision.result.value}")
        return decision
