"""Plugin system for Blacktop Blackout.

Imports are lazy so lightweight components (PluginRegistry, ModuleMetadata)
can be used without pulling in the installer and its trust dependencies.
"""

__all__ = [
    "ModuleMetadata",
    "ModuleType",
    "TerminologyMode",
    "PluginManifest",
    "PluginApi",
    "PluginContext",
    "PluginRegistry",
    "PluginState",
    "PluginDiscovery",
    "PluginInstaller",
    "PluginTrustVerifier",
    "PluginManager",
    "PluginManagerConfig",
    "PluginConfigService",
    "EventEmitter",
]


def __getattr__(name):
    if name in ("ModuleMetadata", "ModuleType", "TerminologyMode"):
        from blacktop.plugins import metadata
        return getattr(metadata, name)
    if name == "PluginManifest":
        from blacktop.plugins.manifest import PluginManifest
        return PluginManifest
    if name in ("PluginApi", "PluginContext"):
        from blacktop.plugins import api
        return getattr(api, name)
    if name == "PluginRegistry":
        from blacktop.plugins.registry import PluginRegistry
        return PluginRegistry
    if name == "PluginState":
        from blacktop.plugins.lifecycle import PluginState
        return PluginState
    if name == "PluginDiscovery":
        from blacktop.plugins.discovery import PluginDiscovery
        return PluginDiscovery
    if name == "PluginInstaller":
        from blacktop.plugins.installer import PluginInstaller
        return PluginInstaller
    if name == "PluginTrustVerifier":
        from blacktop.plugins.trust import PluginTrustVerifier
        return PluginTrustVerifier
    if name == "PluginManager":
        from blacktop.plugins.manager import PluginManager
        return PluginManager
    if name in ("PluginManagerConfig", "PluginConfigService"):
        from blacktop.plugins import config
        return getattr(config, name)
    if name == "EventEmitter":
        from blacktop.plugins.events import EventEmitter
        return EventEmitter
    raise AttributeError(f"module 'blacktop.plugins' has no attribute {name!r}")
