"""HTTP client for the plugin management API."""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from blacktop.constants import BLACKTOP_API_URL
from blacktop.errors import NetworkError
from blacktop.plugins.metadata import ModuleMetadata

logger = logging.getLogger(__name__)


class ModuleApiClient:
    """Thin aiohttp wrapper around ``/api/plugins``.

    Responses are unwrapped from the ``{success, data, error}`` envelope. Any
    transport failure or ``success: false`` answer raises :class:`NetworkError`.
    """

    def __init__(self, base_url: str = BLACKTOP_API_URL, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def list_modules(self) -> List[ModuleMetadata]:
        """Registry catalog as known by the server."""
        data = await self._request("GET", "/api/plugins")
        return [ModuleMetadata.model_validate(entry) for entry in (data or {}).get("registry", [])]

    async def enable(self, module_id: str) -> None:
        await self._request("POST", f"/api/plugins/{module_id}/enable")

    async def disable(self, module_id: str) -> None:
        await self._request("POST", f"/api/plugins/{module_id}/disable")

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=payload) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None

                    if not isinstance(body, dict):
                        text = await response.text()
                        raise NetworkError(f"HTTP {response.status} from {url}: {text[:200]}")
                    if response.status >= 400 or not body.get("success", False):
                        raise NetworkError(
                            f"HTTP {response.status} from {url}: {body.get('error') or body.get('message')}"
                        )
                    return body.get("data")
        except aiohttp.ClientError as e:
            logger.error(f"Request error for {method} {url}: {e}")
            raise NetworkError(f"Request to {url} failed: {e}") from e
