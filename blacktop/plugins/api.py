"""PluginApi - the shared capability facade, and PluginContext - what each plugin receives."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter

from blacktop.plugins.events import EventEmitter

if TYPE_CHECKING:
    from blacktop.services.messaging_service import MessagingService
    from blacktop.services.storage_service import KeyValueStore


@dataclass
class PluginApi:
    """Core services shared by every loaded plugin.

    ``database`` and ``auth`` are injected by the host application when those
    services are available; they stay ``None`` otherwise.
    """

    messaging: MessagingService
    storage: KeyValueStore
    database: Any = None
    auth: Any = None


class PluginLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the plugin id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['plugin_id']}] {msg}", kwargs


def create_plugin_logger(plugin_id: str, name: Optional[str] = None) -> PluginLoggerAdapter:
    """Get a logger for a plugin.

    Args:
        plugin_id: Plugin the records belong to
        name: Optional sub-logger name (appended to plugin.{plugin_id})

    Returns:
        Logger adapter prefixing lines with ``[plugin_id]``
    """
    logger_name = f"plugin.{plugin_id}.{name}" if name else f"plugin.{plugin_id}"
    return PluginLoggerAdapter(logging.getLogger(logger_name), {"plugin_id": plugin_id})


@dataclass
class PluginContext:
    """Capability bundle handed to ``initialize(context)``.

    One context exists per loaded plugin; it is discarded at unload.
    """

    plugin_id: str
    api: PluginApi
    config: Dict[str, Any]
    logger: PluginLoggerAdapter
    events: EventEmitter = field(default_factory=EventEmitter)
    _routers: List[Tuple[APIRouter, str]] = field(default_factory=list, init=False, repr=False)
    _hooks: Dict[str, List[Callable]] = field(default_factory=dict, init=False, repr=False)

    def register_router(self, router: APIRouter, prefix: str = "") -> None:
        """Register a FastAPI router for this plugin.

        The host mounts it under ``/api/plugin/<plugin_id><prefix>`` once the
        plugin is loaded and removes it at unload.
        """
        self._routers.append((router, prefix))
        self.logger.info(f"Registered router with prefix '{prefix}'")

    def register_hook(self, hook_type: str, handler: Callable) -> None:
        self._hooks.setdefault(hook_type, []).append(handler)
        self.logger.info(f"Registered hook: {hook_type}")

    def get_logger(self, name: Optional[str] = None) -> PluginLoggerAdapter:
        if name:
            return create_plugin_logger(self.plugin_id, name)
        return self.logger

    def get_storage_namespace(self) -> "NamespacedStorage":
        """Storage view whose keys are private to this plugin."""
        return NamespacedStorage(self.api.storage, f"plugin:{self.plugin_id}:")

    @property
    def routers(self) -> List[Tuple[APIRouter, str]]:
        return self._routers

    @property
    def hooks(self) -> Dict[str, List[Callable]]:
        return self._hooks


class NamespacedStorage:
    """Prefixes keys of an underlying key/value store."""

    def __init__(self, store: KeyValueStore, prefix: str):
        self._store = store
        self._prefix = prefix

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(self._prefix + key, default)

    def set(self, key: str, value: Any) -> None:
        self._store.set(self._prefix + key, value)

    def delete(self, key: str) -> bool:
        return self._store.delete(self._prefix + key)

    def exists(self, key: str) -> bool:
        return self._store.exists(self._prefix + key)

    def keys(self) -> List[str]:
        return [k[len(self._prefix):] for k in self._store.keys() if k.startswith(self._prefix)]
