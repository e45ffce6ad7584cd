"""Plugin discovery - scans plugin directories for plugin.json manifests."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError

from blacktop.plugins.lifecycle import find_manifest_dir
from blacktop.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)

MANIFEST_FILE = "plugin.json"


@dataclass
class PluginPackage:
    """A plugin bundle found on disk."""

    manifest: PluginManifest
    root: Path  # directory owned by the plugin (removed on uninstall)
    manifest_dir: Path  # directory holding plugin.json, entry points resolve from here
    source: str  # "bundled" | "installed"

    @property
    def id(self) -> str:
        return self.manifest.id


class PluginDiscovery:
    """Discovers plugins by scanning directories for plugin.json manifests."""

    def __init__(self, search_paths: List[Tuple[Path, str]]):
        """Initialize discovery with search paths.

        Args:
            search_paths: (path, source_label) tuples, searched in order
        """
        self.search_paths = search_paths

    def discover_all(self) -> List[PluginPackage]:
        """Discover all plugins from configured search paths.

        Returns:
            Discovered packages; on duplicate ids the first found wins
        """
        discovered = []
        seen_ids = set()

        for search_path, source in self.search_paths:
            if not search_path.exists():
                logger.debug(f"Plugin search path does not exist: {search_path}")
                continue

            for package in self._scan_directory(search_path, source):
                if package.id in seen_ids:
                    logger.warning(
                        f"Duplicate plugin ID '{package.id}' found at {package.root}, "
                        f"skipping (first-found wins)"
                    )
                    continue
                seen_ids.add(package.id)
                discovered.append(package)

        logger.info(f"Discovered {len(discovered)} plugin(s)")
        return discovered

    def find(self, plugin_id: str) -> Optional[PluginPackage]:
        """Find one plugin by id across all search paths."""
        for search_path, source in self.search_paths:
            candidate = search_path / plugin_id
            if candidate.is_dir():
                package = self.discover_single(candidate, source)
                if package and package.id == plugin_id:
                    return package

        return next((p for p in self.discover_all() if p.id == plugin_id), None)

    def discover_single(self, plugin_path: Path, source: str = "installed") -> Optional[PluginPackage]:
        """Discover a single plugin from a specific path.

        Args:
            plugin_path: Plugin root (plugin.json directly inside or one level down)
            source: Source label

        Returns:
            PluginPackage if valid, None otherwise
        """
        manifest_dir = find_manifest_dir(plugin_path, MANIFEST_FILE)
        if manifest_dir is None:
            logger.error(f"No {MANIFEST_FILE} found at {plugin_path}")
            return None
        manifest = load_manifest(manifest_dir / MANIFEST_FILE)
        if manifest is None:
            return None
        return PluginPackage(manifest=manifest, root=plugin_path, manifest_dir=manifest_dir, source=source)

    def _scan_directory(self, search_path: Path, source: str) -> List[PluginPackage]:
        packages = []
        for item in sorted(search_path.iterdir()):
            if not item.is_dir() or item.name.startswith("."):
                continue
            if find_manifest_dir(item, MANIFEST_FILE) is None:
                continue
            package = self.discover_single(item, source)
            if package:
                packages.append(package)
        return packages


def load_manifest(manifest_file: Path) -> Optional[PluginManifest]:
    """Load and validate a plugin manifest.

    Returns:
        PluginManifest if valid, None otherwise (errors are logged)
    """
    try:
        with open(manifest_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        manifest = PluginManifest(**data)
        logger.debug(f"Discovered plugin: {manifest.id} at {manifest_file.parent}")
        return manifest
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in {manifest_file}: {e}")
    except ValidationError as e:
        logger.error(f"Invalid manifest in {manifest_file}: {e}")
    except (OSError, TypeError) as e:
        logger.error(f"Error loading {manifest_file}: {e}")

    return None
