"""Plugin registry - in-memory catalog of module metadata."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from blacktop.plugins.metadata import ModuleMetadata, ModuleType, parse_module_type

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Catalog of module metadata keyed by id.

    The registry only describes modules; whether a plugin is loaded is tracked by
    the plugin manager. None of the operations raise for unknown ids.
    """

    def __init__(self):
        self._plugins: Dict[str, ModuleMetadata] = {}

    def register_plugin(self, metadata: ModuleMetadata) -> None:
        """Insert or replace the metadata stored under ``metadata.id``."""
        self._plugins[metadata.id] = metadata
        logger.info(f"Plugin registered: {metadata.id}")

    def unregister_plugin(self, plugin_id: str) -> None:
        """Remove a plugin entry. Unknown ids are ignored."""
        if self._plugins.pop(plugin_id, None) is not None:
            logger.info(f"Plugin unregistered: {plugin_id}")

    def get_plugin_metadata(self, plugin_id: str) -> Optional[ModuleMetadata]:
        return self._plugins.get(plugin_id)

    def get_all_plugins(self) -> List[ModuleMetadata]:
        return list(self._plugins.values())

    def search_plugins(
        self, query: str, plugin_type: Optional[Union[ModuleType, str]] = None
    ) -> List[ModuleMetadata]:
        """Search by name, description or tag (case-insensitive substring).

        Args:
            query: Text to look for
            plugin_type: Optional exact module type filter

        Returns:
            Entries matching the text AND the type filter
        """
        needle = query.lower()
        wanted_type = parse_module_type(plugin_type) if plugin_type else None

        results = []
        for plugin in self._plugins.values():
            matches_query = (
                needle in plugin.name.lower()
                or needle in plugin.description.lower()
                or any(needle in tag.lower() for tag in plugin.tags)
            )
            matches_type = wanted_type is None or plugin.type == wanted_type
            if matches_query and matches_type:
                results.append(plugin)
        return results

    def get_plugins_by_category(self, category: str) -> List[ModuleMetadata]:
        return [p for p in self._plugins.values() if p.category == category]

    def update_plugin_metadata(
        self, plugin_id: str, updates: Union[Mapping[str, Any], ModuleMetadata]
    ) -> None:
        """Merge fields into an existing entry and stamp ``last_updated``.

        Args:
            plugin_id: Entry to update; unknown ids are ignored
            updates: Partial field values (snake_case or camelCase keys)
        """
        existing = self._plugins.get(plugin_id)
        if existing is None:
            return

        if isinstance(updates, ModuleMetadata):
            updates = updates.model_dump(exclude_unset=True)

        merged = existing.model_dump()
        merged.update(self._field_names(updates))
        merged["id"] = plugin_id
        merged["last_updated"] = datetime.now(timezone.utc)

        try:
            self._plugins[plugin_id] = ModuleMetadata.model_validate(merged)
        except ValidationError as e:
            logger.error(f"Rejected metadata update for {plugin_id}: {e}")
            return
        logger.info(f"Plugin metadata updated: {plugin_id}")

    def load_catalog(self, catalog_file: Path) -> int:
        """Seed the registry from a JSON array of metadata entries.

        Returns:
            Number of entries registered
        """
        try:
            with open(catalog_file, "r", encoding="utf-8") as f:
                entries = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading plugin catalog {catalog_file}: {e}")
            return 0

        if not isinstance(entries, list):
            logger.error(f"Plugin catalog {catalog_file} must contain a JSON array")
            return 0

        count = 0
        for entry in entries:
            try:
                self.register_plugin(ModuleMetadata.model_validate(entry))
                count += 1
            except ValidationError as e:
                logger.error(f"Invalid catalog entry in {catalog_file}: {e}")
        logger.info(f"Loaded {count} catalog entr{'y' if count == 1 else 'ies'} from {catalog_file}")
        return count

    def has(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins

    def count(self) -> int:
        return len(self._plugins)

    @staticmethod
    def _field_names(updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Map camelCase aliases back to field names."""
        by_alias = {
            field.alias: name
            for name, field in ModuleMetadata.model_fields.items()
            if field.alias
        }
        return {by_alias.get(key, key): value for key, value in updates.items()}
