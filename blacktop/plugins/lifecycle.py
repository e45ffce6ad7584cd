"""Plugin lifecycle helpers - entry point import, interface validation and state bookkeeping."""
from __future__ import annotations

import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol

from blacktop.errors import ValidationError
from blacktop.plugins.manifest import PluginManifest

if TYPE_CHECKING:
    from blacktop.plugins.api import PluginContext

logger = logging.getLogger(__name__)

REQUIRED_PROPERTIES = ("id", "name", "version", "description", "author")
REQUIRED_METHODS = ("initialize", "destroy", "enable", "disable")


class PluginModule(Protocol):
    """What a plugin object looks like.

    Lifecycle methods may be plain functions or coroutines.
    """

    id: str
    name: str
    version: str
    description: str
    author: str

    def initialize(self, context: PluginContext) -> Any: ...

    def destroy(self) -> Any: ...

    def enable(self) -> Any: ...

    def disable(self) -> Any: ...


class PluginState(str, Enum):
    """Plugin lifecycle states."""

    UNINSTALLED = "uninstalled"
    INSTALLED = "installed"
    LOADED = "loaded"
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass
class LoadedPlugin:
    """Manager bookkeeping for one loaded plugin."""

    instance: PluginModule
    context: PluginContext
    state: PluginState = PluginState.LOADED
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    manifest: Optional[PluginManifest] = None

    @property
    def enabled(self) -> bool:
        return self.state == PluginState.ENABLED


def import_entry_point(manifest: PluginManifest, manifest_dir: Path) -> Any:
    """Import a plugin entry point and return the plugin object.

    The attribute named by the entry point is either the plugin object itself or a
    zero-argument class/factory producing it.

    Raises:
        ValidationError: The module or attribute cannot be imported
    """
    module_path = manifest.entry_module
    relative = Path(*module_path.split("."))
    candidates = [manifest_dir / relative.with_suffix(".py"), manifest_dir / relative / "__init__.py"]
    module_file = next((c for c in candidates if c.exists()), None)
    if module_file is None:
        raise ValidationError(f"Cannot find module {module_path} in {manifest_dir}")

    module_name = f"blacktop_plugin_{manifest.id.replace('-', '_')}_{module_path.replace('.', '_')}"

    # Plugin directory is importable while the entry module executes so sibling imports work
    plugin_dir = str(manifest_dir)
    added = plugin_dir not in sys.path
    if added:
        sys.path.insert(0, plugin_dir)
    try:
        spec = importlib.util.spec_from_file_location(module_name, module_file)
        if spec is None or spec.loader is None:
            raise ValidationError(f"Cannot create module spec for {module_file}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise ValidationError(f"Failed to import plugin {manifest.id}: {e}") from e
    finally:
        if added and plugin_dir in sys.path:
            sys.path.remove(plugin_dir)

    target = getattr(module, manifest.entry_attribute, None)
    if target is None:
        raise ValidationError(
            f"Module {module_path} has no attribute '{manifest.entry_attribute}'",
            member=manifest.entry_attribute,
        )

    if inspect.isclass(target) or (callable(target) and not _looks_like_plugin(target)):
        try:
            target = target()
        except Exception as e:
            raise ValidationError(f"Plugin factory {manifest.entry_point} failed: {e}") from e

    logger.debug(f"Imported entry point {manifest.entry_point} for {manifest.id}")
    return target


def release_entry_point(manifest: PluginManifest) -> None:
    """Forget the imported entry module so a later load re-executes it."""
    module_name = f"blacktop_plugin_{manifest.id.replace('-', '_')}_{manifest.entry_module.replace('.', '_')}"
    sys.modules.pop(module_name, None)


def validate_plugin_interface(plugin: Any) -> None:
    """Check identity fields and lifecycle methods.

    Raises:
        ValidationError: Naming the first missing member
    """
    for prop in REQUIRED_PROPERTIES:
        if not getattr(plugin, prop, None):
            raise ValidationError(f"Plugin missing required property: {prop}", member=prop)

    for method in REQUIRED_METHODS:
        if not callable(getattr(plugin, method, None)):
            raise ValidationError(f"Plugin missing required method: {method}", member=method)


async def call_hook(plugin: Any, hook: str, *args: Any) -> None:
    """Call a lifecycle method, awaiting it when it returns an awaitable."""
    result = getattr(plugin, hook)(*args)
    if inspect.isawaitable(result):
        await result


def describe_plugin(plugin: Any) -> dict:
    """Identity fields of a loaded plugin for API responses."""
    return {
        "id": getattr(plugin, "id", None),
        "name": getattr(plugin, "name", None),
        "version": getattr(plugin, "version", None),
        "description": getattr(plugin, "description", None),
        "author": getattr(plugin, "author", None),
        "dependencies": list(getattr(plugin, "dependencies", None) or []),
        "permissions": list(getattr(plugin, "permissions", None) or []),
        "metadata": dict(getattr(plugin, "metadata", None) or {}),
    }


def _looks_like_plugin(obj: Any) -> bool:
    return all(callable(getattr(obj, m, None)) for m in REQUIRED_METHODS)


def find_manifest_dir(root: Path, manifest_file: str = "plugin.json") -> Optional[Path]:
    """Locate the directory holding plugin.json at ``root`` or one level below."""
    if (root / manifest_file).exists():
        return root
    if not root.is_dir():
        return None
    for child in sorted(root.iterdir()):
        if child.is_dir() and (child / manifest_file).exists():
            return child
    return None
