"""Plugin manager settings and the persisted per-plugin configuration."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from blacktop import constants
from blacktop.services.storage_service import JsonFileKeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class PluginManagerConfig:
    """Runtime settings of the plugin manager.

    ``max_memory_mb`` and ``max_execution_ms`` are advisory: they are reported in
    statistics but no sandbox enforces them.
    """

    plugin_directory: Path
    bundled_directory: Optional[Path] = None
    sandbox_enabled: bool = False
    trusted_sources: List[str] = field(default_factory=list)
    trusted_keys_dir: Optional[Path] = None
    require_signature: bool = False
    max_memory_mb: int = 512
    max_execution_ms: int = 30000

    @classmethod
    def from_env(cls) -> "PluginManagerConfig":
        return cls(
            plugin_directory=constants.PLUGIN_DIRECTORY,
            bundled_directory=constants.BUNDLED_PLUGINS_DIR,
            sandbox_enabled=constants.PLUGIN_SANDBOX,
            trusted_sources=list(constants.PLUGIN_TRUSTED_SOURCES),
            trusted_keys_dir=constants.PLUGIN_TRUSTED_KEYS_DIR,
            require_signature=constants.PLUGIN_REQUIRE_SIGNATURE,
            max_memory_mb=constants.PLUGIN_MAX_MEMORY_MB,
            max_execution_ms=constants.PLUGIN_MAX_EXECUTION_MS,
        )


class PluginConfigService:
    """Persists which plugins are enabled and each plugin's configuration.

    Stored as one JSON document:
    {
        "enabled": ["weather"],
        "plugins": {
            "weather": {"units": "imperial"}
        }
    }
    """

    def __init__(self, config_file: Path):
        self.config_file = config_file
        self._store = JsonFileKeyValueStore(config_file)

    def is_enabled(self, plugin_id: str) -> bool:
        return plugin_id in self.get_enabled_list()

    def get_enabled_list(self) -> List[str]:
        return list(self._store.get("enabled", []))

    def get_plugin_config(self, plugin_id: str) -> Dict[str, Any]:
        return dict(self._store.get("plugins", {}).get(plugin_id, {}))

    def enable(self, plugin_id: str) -> None:
        enabled = self.get_enabled_list()
        if plugin_id not in enabled:
            enabled.append(plugin_id)
            self._store.set("enabled", enabled)
            logger.info(f"Marked plugin enabled: {plugin_id}")

    def disable(self, plugin_id: str) -> None:
        enabled = self.get_enabled_list()
        if plugin_id in enabled:
            enabled.remove(plugin_id)
            self._store.set("enabled", enabled)
            logger.info(f"Marked plugin disabled: {plugin_id}")

    def update_plugin_config(self, plugin_id: str, config: Dict[str, Any]) -> None:
        plugins = dict(self._store.get("plugins", {}))
        plugins[plugin_id] = config
        self._store.set("plugins", plugins)
        logger.info(f"Updated config for plugin: {plugin_id}")

    def remove(self, plugin_id: str) -> None:
        """Forget everything stored for a plugin."""
        self.disable(plugin_id)
        plugins = dict(self._store.get("plugins", {}))
        if plugins.pop(plugin_id, None) is not None:
            self._store.set("plugins", plugins)

    def reload(self) -> None:
        self._store.reload()
