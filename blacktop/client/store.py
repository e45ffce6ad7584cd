"""Client module store - available/loaded UI modules and console preferences."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from blacktop.client.api_client import ModuleApiClient
from blacktop.client.loaders import ComponentResolver, RemoteBundleLoader
from blacktop.constants import CLIENT_STATE_FILE, TERMINOLOGY_STORAGE_KEY
from blacktop.errors import PluginNotFoundError
from blacktop.plugins.metadata import ModuleMetadata, ModuleType, TerminologyMode, parse_module_type
from blacktop.services.storage_service import JsonFileKeyValueStore, KeyValueStore
from blacktop.utils.locks import SingleFlight

logger = logging.getLogger(__name__)

StoreListener = Callable[["ModuleStore"], None]


@dataclass
class LoadedModule:
    """Load state of one module. Exactly one of loading/ready/error holds."""

    metadata: ModuleMetadata
    component: Optional[Any] = None
    routes: List[Any] = field(default_factory=list)
    is_loading: bool = False
    load_error: Optional[str] = None
    last_loaded: Optional[datetime] = None

    @property
    def status(self) -> str:
        if self.is_loading:
            return "loading"
        if self.load_error is not None:
            return "error"
        return "ready"


class ModuleStore:
    """Observable state container for the console's module system.

    Listeners registered with :meth:`subscribe` are called after every state
    change. Concurrent :meth:`load_module` calls for one id share a single
    in-flight load.
    """

    def __init__(
        self,
        api_client: Optional[ModuleApiClient] = None,
        resolver: Optional[ComponentResolver] = None,
        storage: Optional[KeyValueStore] = None,
    ):
        self.api_client = api_client or ModuleApiClient()
        self.resolver = resolver or ComponentResolver(remote=RemoteBundleLoader())
        self.storage = storage or JsonFileKeyValueStore(CLIENT_STATE_FILE)

        self.available_modules: List[ModuleMetadata] = []
        self.loaded_modules: Dict[str, LoadedModule] = {}
        self.is_marketplace_open = False
        self.terminology_mode = self._restore_terminology_mode()

        self._listeners: List[StoreListener] = []
        self._flight = SingleFlight()

    # ------------------------------------------------------------------
    # Module actions
    # ------------------------------------------------------------------

    def set_available_modules(self, modules: List[ModuleMetadata]) -> None:
        self.available_modules = list(modules)
        self._notify()

    async def refresh_available_modules(self) -> List[ModuleMetadata]:
        """Replace the available list with the server's registry catalog."""
        modules = await self.api_client.list_modules()
        self.set_available_modules(modules)
        logger.info(f"Fetched {len(modules)} available module(s)")
        return modules

    async def load_module(self, module_id: str) -> LoadedModule:
        """Load a module's component.

        Fetch failures do not raise: they are recorded on the returned entry's
        ``load_error``.

        Raises:
            PluginNotFoundError: The id is not in ``available_modules``
        """
        metadata = self._find_available(module_id)
        if metadata is None:
            logger.error(f"Module {module_id} not found in available modules")
            raise PluginNotFoundError(module_id, f"Module {module_id} not found in available modules")

        return await self._flight.do(module_id, lambda: self._load(module_id, metadata))

    def unload_module(self, module_id: str) -> None:
        self.loaded_modules.pop(module_id, None)
        logger.info(f"Module {module_id} unloaded")
        self._notify()

    async def enable_module(self, module_id: str) -> None:
        """Ask the server to enable a module; reload it if it is loaded here."""
        try:
            await self.api_client.enable(module_id)
        except Exception as e:
            logger.error(f"Failed to enable module {module_id}: {e}")
            return

        if self.is_module_loaded(module_id):
            await self.load_module(module_id)

    async def disable_module(self, module_id: str) -> None:
        """Unload a module locally, then ask the server to disable it."""
        self.unload_module(module_id)
        try:
            await self.api_client.disable(module_id)
        except Exception as e:
            logger.error(f"Failed to disable module {module_id}: {e}")

    # ------------------------------------------------------------------
    # UI actions
    # ------------------------------------------------------------------

    def toggle_marketplace(self) -> bool:
        self.is_marketplace_open = not self.is_marketplace_open
        self._notify()
        return self.is_marketplace_open

    def set_terminology_mode(self, mode: Union[TerminologyMode, str]) -> None:
        mode = TerminologyMode(mode)
        self.terminology_mode = mode
        self.storage.set(TERMINOLOGY_STORAGE_KEY, mode.value)
        self._notify()

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def get_loaded_module(self, module_id: str) -> Optional[LoadedModule]:
        return self.loaded_modules.get(module_id)

    def is_module_loaded(self, module_id: str) -> bool:
        return module_id in self.loaded_modules

    def get_modules_by_type(self, module_type: Union[ModuleType, str]) -> List[ModuleMetadata]:
        wanted = parse_module_type(module_type)
        return [m for m in self.available_modules if m.type == wanted]

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Callable removing the listener
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, module_id: str, metadata: ModuleMetadata) -> LoadedModule:
        self.loaded_modules[module_id] = LoadedModule(
            metadata=metadata, is_loading=True, last_loaded=_now()
        )
        self._notify()

        try:
            component = None
            routes: List[Any] = []
            if metadata.type == ModuleType.FRONTEND_UI:
                resolved = await self.resolver.resolve_component(module_id, metadata)
                component = resolved.component
                routes = resolved.routes

            entry = LoadedModule(metadata=metadata, component=component, routes=routes, last_loaded=_now())
            logger.info(f"Module {module_id} loaded successfully")
        except Exception as e:
            logger.error(f"Failed to load module {module_id}: {e}")
            entry = LoadedModule(metadata=metadata, load_error=str(e) or type(e).__name__, last_loaded=_now())

        self.loaded_modules[module_id] = entry
        self._notify()
        return entry

    def _find_available(self, module_id: str) -> Optional[ModuleMetadata]:
        return next((m for m in self.available_modules if m.id == module_id), None)

    def _restore_terminology_mode(self) -> TerminologyMode:
        saved = self.storage.get(TERMINOLOGY_STORAGE_KEY)
        if saved:
            try:
                return TerminologyMode(saved)
            except ValueError:
                logger.warning(f"Ignoring unknown saved terminology mode: {saved}")
        return TerminologyMode.CIVILIAN

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Error in module store listener: {e}")


def _now() -> datetime:
    return datetime.now(timezone.utc)
