"""Plugin manager - installs, loads and drives the lifecycle of backend plugins."""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil

from blacktop.errors import NotLoadedError, SignatureError
from blacktop.plugins.api import PluginApi, PluginContext, create_plugin_logger
from blacktop.plugins.config import PluginConfigService, PluginManagerConfig
from blacktop.plugins.events import EventEmitter
from blacktop.plugins.installer import PluginInstaller
from blacktop.plugins.lifecycle import (
    LoadedPlugin,
    PluginState,
    call_hook,
    describe_plugin,
    release_entry_point,
    validate_plugin_interface,
)
from blacktop.plugins.manifest import PluginManifest
from blacktop.plugins.metadata import ModuleMetadata
from blacktop.plugins.registry import PluginRegistry
from blacktop.plugins.trust import PluginTrustVerifier, SignatureStatus
from blacktop.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class PluginManager:
    """Top-level plugin system orchestrator.

    Per plugin id the lifecycle is
    ``uninstalled -> installed -> loaded (enabled | disabled) -> installed -> uninstalled``.
    Operations on the same id are serialized with a per-id lock.

    Lifecycle events (``beforeInstall``, ``installed``, ``pluginLoaded``,
    ``pluginUnloaded``, ``pluginEnabled``, ``pluginDisabled``,
    ``pluginUninstalled``, ``error``) are emitted on :attr:`events`.
    """

    def __init__(
        self,
        config: PluginManagerConfig,
        plugin_api: PluginApi,
        registry: Optional[PluginRegistry] = None,
        installer: Optional[PluginInstaller] = None,
        config_service: Optional[PluginConfigService] = None,
        trust: Optional[PluginTrustVerifier] = None,
    ):
        self.config = config
        self.plugin_api = plugin_api
        self.registry = registry or PluginRegistry()
        self.installer = installer or PluginInstaller(config.plugin_directory, config.bundled_directory)
        self.config_service = config_service
        self.trust = trust or PluginTrustVerifier(config.trusted_sources, config.trusted_keys_dir)
        self.events = EventEmitter()

        self._loaded: Dict[str, LoadedPlugin] = {}
        self._locks = KeyedLock()
        self._started_at = time.monotonic()
        self._setup_event_handlers()

    def _setup_event_handlers(self) -> None:
        def _before_install(package_spec: str) -> None:
            self.events.emit("beforeInstall", package_spec)

        def _installed(plugin_id: str) -> None:
            logger.info(f"Plugin installed: {plugin_id}")
            self.events.emit("installed", plugin_id)

        def _error(error: Exception) -> None:
            logger.error(f"Plugin installer error: {error}")
            self.events.emit("error", error, None)

        self.installer.events.on("beforeInstall", _before_install)
        self.installer.events.on("installed", _installed)
        self.installer.events.on("error", _error)

    def on(self, event: str, listener: Callable) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Callable) -> None:
        self.events.off(event, listener)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def install_plugin(self, package_spec: str, version: Optional[str] = None) -> ModuleMetadata:
        """Install a plugin from a local directory or a pip requirement.

        With sandboxing enabled the source is matched against the trusted-source
        allow-list (failures are logged, not blocked) and the package signature is
        verified; an invalid signature always aborts the install.

        Returns:
            Registry metadata of the installed plugin

        Raises:
            InstallError: The installer failed or the package was rejected
        """
        logger.info(f"Installing plugin: {package_spec}@{version or 'latest'}")

        source_trusted = None
        checks: Dict[str, Any] = {}
        verify = None

        if self.config.sandbox_enabled:
            source_trusted = self.trust.is_trusted_source(package_spec)
            if not source_trusted:
                logger.warning(f"Plugin {package_spec} is not from a trusted source")

            def verify(staging: Path, manifest: PluginManifest) -> None:
                checks["signature"] = self._verify_package(staging, manifest)
        else:
            logger.info(f"Trust checks disabled, {package_spec} will be marked unverified")

        # The plugin id is only known once the bundle is staged
        staged = await self.installer.stage(package_spec, version, verify=verify)
        manifest = staged.manifest

        async with self._locks.hold(manifest.id):
            package = self.installer.commit(staged)

            trusted = None
            signature = checks.get("signature")
            if signature is not None:
                trusted = signature.verified or (bool(source_trusted) and not self.config.require_signature)

            existing = self.registry.get_plugin_metadata(manifest.id)
            metadata = manifest.to_metadata(
                installed=True,
                enabled=existing.enabled if existing else False,
                install_date=datetime.now(timezone.utc),
                size=_directory_size(package.root),
                trusted=trusted,
                pricing=existing.pricing if existing else None,
                screenshots=existing.screenshots if existing else [],
            )
            self.registry.register_plugin(metadata)

        logger.info(f"Plugin {manifest.id} installed successfully")
        return metadata

    async def load_plugin(self, plugin_id: str) -> None:
        """Import, validate and initialize a plugin.

        Raises:
            PluginNotFoundError: The installer cannot resolve the id
            ValidationError: The plugin object misses a required member
        """
        async with self._locks.hold(plugin_id):
            await self._load(plugin_id)

    async def unload_plugin(self, plugin_id: str) -> None:
        """Destroy a loaded plugin and drop its bookkeeping.

        Bookkeeping is removed even if ``destroy()`` raises; that error is then
        re-raised to the caller.

        Raises:
            NotLoadedError: The plugin is not loaded
        """
        async with self._locks.hold(plugin_id):
            await self._unload(plugin_id)

    async def enable_plugin(self, plugin_id: str) -> None:
        async with self._locks.hold(plugin_id):
            record = self._require_loaded(plugin_id)
            await self._run_hook(plugin_id, record, "enable")
            record.state = PluginState.ENABLED
            if self.config_service:
                self.config_service.enable(plugin_id)
            self.registry.update_plugin_metadata(plugin_id, {"enabled": True})

        logger.info(f"Plugin {plugin_id} enabled")
        self.events.emit("pluginEnabled", plugin_id)

    async def disable_plugin(self, plugin_id: str) -> None:
        async with self._locks.hold(plugin_id):
            record = self._require_loaded(plugin_id)
            await self._run_hook(plugin_id, record, "disable")
            record.state = PluginState.DISABLED
            if self.config_service:
                self.config_service.disable(plugin_id)
            self.registry.update_plugin_metadata(plugin_id, {"enabled": False})

        logger.info(f"Plugin {plugin_id} disabled")
        self.events.emit("pluginDisabled", plugin_id)

    async def uninstall_plugin(self, plugin_id: str) -> None:
        """Unload (if loaded) and remove a plugin's files."""
        logger.info(f"Uninstalling plugin: {plugin_id}")

        async with self._locks.hold(plugin_id):
            if plugin_id in self._loaded:
                await self._unload(plugin_id)

            try:
                await self.installer.uninstall(plugin_id)
            except Exception as e:
                logger.error(f"Failed to uninstall plugin {plugin_id}: {e}")
                self.events.emit("error", e, plugin_id)
                raise

            if self.config_service:
                self.config_service.remove(plugin_id)
            self.registry.update_plugin_metadata(plugin_id, {"installed": False, "enabled": False})

        logger.info(f"Plugin {plugin_id} uninstalled successfully")
        self.events.emit("pluginUninstalled", plugin_id)

    # ------------------------------------------------------------------
    # Startup helpers
    # ------------------------------------------------------------------

    def discover(self) -> int:
        """Register metadata for every installed and bundled plugin.

        Returns:
            Number of plugins found on disk
        """
        packages = self.installer.list_packages()
        for package in packages:
            existing = self.registry.get_plugin_metadata(package.id)
            enabled = self.config_service.is_enabled(package.id) if self.config_service else False
            if existing:
                self.registry.update_plugin_metadata(
                    package.id, {"installed": True, "version": package.manifest.version}
                )
            else:
                self.registry.register_plugin(
                    package.manifest.to_metadata(
                        installed=True,
                        enabled=enabled,
                        size=_directory_size(package.root),
                    )
                )
        return len(packages)

    async def load_enabled(self) -> List[str]:
        """Load and enable every plugin marked enabled in the config file.

        Failures are logged per plugin and do not stop the others.

        Returns:
            Ids that ended up enabled
        """
        if not self.config_service:
            return []

        started = []
        for plugin_id in self.config_service.get_enabled_list():
            try:
                if not self.is_plugin_loaded(plugin_id):
                    await self.load_plugin(plugin_id)
                await self.enable_plugin(plugin_id)
                started.append(plugin_id)
            except Exception as e:
                logger.error(f"Failed to start enabled plugin {plugin_id}: {e}")

        logger.info(f"Plugin system initialized, {len(started)} plugin(s) enabled")
        return started

    async def shutdown(self) -> None:
        """Unload every plugin (best effort) and drop all listeners."""
        logger.info("Shutting down plugin manager")

        for plugin_id in list(self._loaded.keys()):
            try:
                await self.unload_plugin(plugin_id)
            except Exception as e:
                logger.error(f"Error unloading plugin {plugin_id} during shutdown: {e}")

        self.events.remove_all_listeners()
        logger.info("Plugin manager shutdown complete")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_installed_plugins(self) -> List[str]:
        return self.installer.list()

    def get_loaded_plugins(self) -> List[str]:
        return list(self._loaded.keys())

    def get_plugin_info(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        record = self._loaded.get(plugin_id)
        if record is None:
            return None
        info = describe_plugin(record.instance)
        info["state"] = record.state.value
        info["loadedAt"] = record.loaded_at.isoformat()
        return info

    def is_plugin_loaded(self, plugin_id: str) -> bool:
        return plugin_id in self._loaded

    def get_plugin(self, plugin_id: str) -> Optional[Any]:
        record = self._loaded.get(plugin_id)
        return record.instance if record else None

    def get_plugin_context(self, plugin_id: str) -> Optional[PluginContext]:
        record = self._loaded.get(plugin_id)
        return record.context if record else None

    def get_plugin_state(self, plugin_id: str) -> PluginState:
        record = self._loaded.get(plugin_id)
        if record is not None:
            return record.state
        if self.installer.get_package(plugin_id) is not None:
            return PluginState.INSTALLED
        return PluginState.UNINSTALLED

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "totalInstalled": len(self.get_installed_plugins()),
            "totalLoaded": len(self._loaded),
            "totalEnabled": sum(1 for r in self._loaded.values() if r.enabled),
            "memoryUsage": psutil.Process().memory_info().rss,
            "uptime": round(time.monotonic() - self._started_at, 3),
            "sandboxEnabled": self.config.sandbox_enabled,
            "maxMemoryUsage": self.config.max_memory_mb * 1024 * 1024,
            "maxExecutionTime": self.config.max_execution_ms,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, plugin_id: str) -> None:
        logger.info(f"Loading plugin: {plugin_id}")
        try:
            package = self.installer.get_package(plugin_id)
            plugin = self.installer.require(plugin_id)
            validate_plugin_interface(plugin)
            if plugin.id != plugin_id:
                logger.warning(f"Plugin object reports id '{plugin.id}' but was loaded as '{plugin_id}'")

            context = self._create_plugin_context(plugin_id)
            await call_hook(plugin, "initialize", context)
        except Exception as e:
            logger.error(f"Failed to load plugin {plugin_id}: {e}")
            self.events.emit("error", e, plugin_id)
            raise

        if plugin_id in self._loaded:
            logger.warning(f"Plugin {plugin_id} was already loaded, replacing the previous instance")

        self._loaded[plugin_id] = LoadedPlugin(
            instance=plugin, context=context, manifest=package.manifest if package else None
        )
        logger.info(f"Plugin {plugin_id} loaded successfully")
        self.events.emit("pluginLoaded", plugin_id)

    async def _unload(self, plugin_id: str) -> None:
        record = self._require_loaded(plugin_id)
        logger.info(f"Unloading plugin: {plugin_id}")

        try:
            await call_hook(record.instance, "destroy")
        except Exception as e:
            logger.error(f"Plugin {plugin_id} raised during destroy: {e}")
            self.events.emit("error", e, plugin_id)
            raise
        finally:
            self._loaded.pop(plugin_id, None)
            record.context.events.remove_all_listeners()
            if record.manifest is not None:
                release_entry_point(record.manifest)
            self.events.emit("pluginUnloaded", plugin_id)

        logger.info(f"Plugin {plugin_id} unloaded successfully")

    async def _run_hook(self, plugin_id: str, record: LoadedPlugin, hook: str) -> None:
        try:
            await call_hook(record.instance, hook)
        except Exception as e:
            logger.error(f"Failed to {hook} plugin {plugin_id}: {e}")
            self.events.emit("error", e, plugin_id)
            raise

    def _require_loaded(self, plugin_id: str) -> LoadedPlugin:
        record = self._loaded.get(plugin_id)
        if record is None:
            raise NotLoadedError(plugin_id)
        return record

    def _create_plugin_context(self, plugin_id: str) -> PluginContext:
        config = self.config_service.get_plugin_config(plugin_id) if self.config_service else {}
        return PluginContext(
            plugin_id=plugin_id,
            api=self.plugin_api,
            config=config,
            logger=create_plugin_logger(plugin_id),
        )

    def _verify_package(self, staging: Path, manifest: PluginManifest):
        check = self.trust.verify_signature(staging)
        if check.status == SignatureStatus.INVALID:
            raise SignatureError(f"Plugin {manifest.id} rejected: {check.message}")
        if not check.verified:
            if self.config.require_signature:
                raise SignatureError(f"Plugin {manifest.id} rejected: {check.message}")
            logger.warning(f"Plugin {manifest.id} signature not verified: {check.message}")
        else:
            logger.info(f"Plugin {manifest.id} signature verified (key {check.key_id})")
        return check


def _directory_size(root: Path) -> int:
    return sum(p.stat().st_size for p in root.rglob("*") if p.is_file())
