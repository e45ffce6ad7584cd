"""Service container and FastAPI dependency getters.

All long-lived state objects are owned by one :class:`ServiceContainer` that the
application stores on ``app.state.services``. Tests build their own container
and hand it to ``create_app``.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import Request

from blacktop import constants
from blacktop.plugins.api import PluginApi
from blacktop.plugins.config import PluginConfigService, PluginManagerConfig
from blacktop.plugins.manager import PluginManager
from blacktop.plugins.registry import PluginRegistry
from blacktop.services.messaging_service import MessagingService
from blacktop.services.storage_service import JsonFileKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Owned service instances shared by the HTTP layer."""

    messaging: MessagingService
    storage: KeyValueStore
    registry: PluginRegistry
    config_service: PluginConfigService
    manager: PluginManager

    @classmethod
    def build(
        cls,
        config: Optional[PluginManagerConfig] = None,
        config_file: Optional[Path] = None,
        storage: Optional[KeyValueStore] = None,
        messaging: Optional[MessagingService] = None,
    ) -> "ServiceContainer":
        """Wire the default service graph from environment settings."""
        config = config or PluginManagerConfig.from_env()
        messaging = messaging or MessagingService()
        storage = storage or JsonFileKeyValueStore(config.plugin_directory / ".storage.json")
        registry = PluginRegistry()
        config_service = PluginConfigService(config_file or constants.PLUGIN_CONFIG_FILE)

        manager = PluginManager(
            config=config,
            plugin_api=PluginApi(messaging=messaging, storage=storage),
            registry=registry,
            config_service=config_service,
        )
        logger.info("Created service container")
        return cls(
            messaging=messaging,
            storage=storage,
            registry=registry,
            config_service=config_service,
            manager=manager,
        )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_plugin_manager(request: Request) -> PluginManager:
    return request.app.state.services.manager


def get_plugin_registry(request: Request) -> PluginRegistry:
    return request.app.state.services.registry


def get_messaging_service(request: Request) -> MessagingService:
    return request.app.state.services.messaging
