"""Component loaders for UI modules.

A module's component is resolved either from a remote bundle (a Python source
file served over HTTP) or from a factory registered locally by the host.
"""

import asyncio
import importlib.util
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import SplitResult, urlsplit

import aiohttp

from blacktop.constants import BLACKTOP_API_URL
from blacktop.errors import NetworkError, PluginNotFoundError, ValidationError
from blacktop.plugins.metadata import ModuleMetadata

logger = logging.getLogger(__name__)

ComponentFactory = Callable[..., Any]


@dataclass
class ResolvedComponent:
    """What a loader produced for one module."""

    component: ComponentFactory
    routes: List[Any] = field(default_factory=list)
    source: str = "local"


class ComponentLoader(ABC):
    """Resolves the component of a module."""

    @abstractmethod
    async def load(self, module_id: str, metadata: ModuleMetadata) -> ResolvedComponent:
        pass


class LocalFactoryLoader(ComponentLoader):
    """Factories registered in-process, used as the bundled fallback."""

    def __init__(self):
        self._factories: Dict[str, ResolvedComponent] = {}

    def register(self, module_id: str, factory: ComponentFactory, routes: Optional[List[Any]] = None) -> None:
        self._factories[module_id] = ResolvedComponent(component=factory, routes=list(routes or []))

    def unregister(self, module_id: str) -> None:
        self._factories.pop(module_id, None)

    def has(self, module_id: str) -> bool:
        return module_id in self._factories

    async def load(self, module_id: str, metadata: ModuleMetadata) -> ResolvedComponent:
        resolved = self._factories.get(module_id)
        if resolved is None:
            raise PluginNotFoundError(module_id, f"No local component registered for module {module_id}")
        return resolved


class RemoteBundleLoader(ComponentLoader):
    """Fetches a module's Python source and executes it as a fresh module.

    The bundle must export ``Component`` or ``create`` and may export ``routes``.
    Only URLs under one of ``trusted_prefixes`` are fetched.
    """

    def __init__(
        self,
        base_url: str = BLACKTOP_API_URL,
        trusted_prefixes: Optional[Sequence[str]] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.trusted_prefixes = list(trusted_prefixes) if trusted_prefixes is not None else [self.base_url]
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def bundle_url(self, module_id: str, metadata: ModuleMetadata) -> str:
        url = metadata.repository or f"/modules/{module_id}/index.py"
        if url.startswith("/"):
            url = f"{self.base_url}{url}"
        return url

    def is_trusted(self, url: str) -> bool:
        """Same scheme, host and port as a trusted prefix, and a path under it."""
        parts = urlsplit(url)
        if parts.username is not None or parts.password is not None:
            return False
        return any(_is_under(parts, urlsplit(prefix)) for prefix in self.trusted_prefixes)

    async def load(self, module_id: str, metadata: ModuleMetadata) -> ResolvedComponent:
        url = self.bundle_url(module_id, metadata)
        if not self.is_trusted(url):
            raise NetworkError(f"Refusing to load module {module_id} from untrusted location {url}")

        source = await self._fetch(url)
        spec = importlib.util.spec_from_loader(f"blacktop_remote_{module_id.replace('-', '_')}", loader=None, origin=url)
        module = importlib.util.module_from_spec(spec)
        module.__file__ = url
        try:
            exec(compile(source, url, "exec"), module.__dict__)
        except Exception as e:
            raise NetworkError(f"Module bundle {url} failed to execute: {e}") from e

        component = getattr(module, "Component", None) or getattr(module, "create", None)
        if component is None:
            raise ValidationError(f"Module bundle {url} exports neither Component nor create", member="Component")

        return ResolvedComponent(component=component, routes=list(getattr(module, "routes", []) or []), source=url)

    async def _fetch(self, url: str) -> str:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise NetworkError(f"HTTP {response.status} fetching {url}")
                    return await response.text()
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Timed out fetching {url}") from e
        except (aiohttp.ClientError, UnicodeDecodeError) as e:
            raise NetworkError(f"Failed to fetch {url}: {e}") from e


def _is_under(parts: SplitResult, prefix: SplitResult) -> bool:
    try:
        if (parts.scheme, parts.hostname, parts.port) != (prefix.scheme, prefix.hostname, prefix.port):
            return False
    except ValueError:
        # non-numeric port
        return False
    base = prefix.path.rstrip("/")
    return not base or parts.path == base or parts.path.startswith(base + "/")


class ComponentResolver:
    """Remote bundle first, local factory as fallback."""

    def __init__(self, remote: Optional[RemoteBundleLoader] = None, local: Optional[LocalFactoryLoader] = None):
        self.remote = remote
        self.local = local or LocalFactoryLoader()

    async def resolve_component(self, module_id: str, metadata: ModuleMetadata) -> ResolvedComponent:
        """Resolve the component of a module.

        Raises:
            NetworkError: The remote bundle failed and there is no local factory
            PluginNotFoundError: No remote loader is configured and no local factory exists
        """
        remote_error: Optional[Exception] = None
        if self.remote is not None:
            try:
                return await self.remote.load(module_id, metadata)
            except (NetworkError, ValidationError) as e:
                logger.warning(f"Failed to load remote module {module_id}, trying local fallback: {e}")
                remote_error = e

        try:
            return await self.local.load(module_id, metadata)
        except PluginNotFoundError:
            if remote_error is not None:
                raise remote_error
            raise
