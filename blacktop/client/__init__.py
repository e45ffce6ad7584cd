"""Client-side module store: tracks which UI modules are available and loaded."""

from .api_client import ModuleApiClient
from .loaders import ComponentResolver, LocalFactoryLoader, RemoteBundleLoader, ResolvedComponent
from .store import LoadedModule, ModuleStore

__all__ = [
    "ModuleApiClient",
    "ComponentResolver",
    "LocalFactoryLoader",
    "RemoteBundleLoader",
    "ResolvedComponent",
    "LoadedModule",
    "ModuleStore",
]
