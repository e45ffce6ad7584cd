"""Plugin manifest model - the plugin.json contract every plugin bundle ships."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from blacktop.plugins.metadata import ModuleMetadata, ModuleType, parse_module_type


class PluginManifest(BaseModel):
    """Plugin manifest loaded from plugin.json."""

    id: str = Field(..., min_length=1, description="Unique plugin identifier (kebab-case)")
    name: str = Field(..., description="Human-readable plugin name")
    version: str = Field(default="1.0.0", description="Plugin version")
    description: str = Field(default="", description="Plugin description")
    author: str = Field(default="", description="Plugin author")
    type: ModuleType = Field(default=ModuleType.BACKEND, description="backend | frontend-ui | core")
    entry_point: str = Field(
        ...,
        description="module.path:attribute relative to the manifest directory, e.g. 'plugin:create_plugin'",
    )
    dependencies: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    category: str = Field(default="general")
    tags: List[str] = Field(default_factory=list)
    license: str = Field(default="UNLICENSED")
    homepage: Optional[str] = None
    repository: Optional[str] = None
    config_schema: Optional[Dict[str, Any]] = Field(
        default=None,
        description="JSON Schema for plugin configuration validation",
    )

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        return parse_module_type(v) if isinstance(v, str) else v

    @field_validator("entry_point")
    @classmethod
    def entry_point_format(cls, v: str) -> str:
        module_name, sep, attr = v.partition(":")
        if not sep or not module_name.strip() or not attr.strip():
            raise ValueError("entry_point must look like 'module:attribute'")
        return v

    @property
    def entry_module(self) -> str:
        return self.entry_point.split(":", 1)[0]

    @property
    def entry_attribute(self) -> str:
        return self.entry_point.split(":", 1)[1]

    def to_metadata(self, **overrides) -> ModuleMetadata:
        """Build the registry catalog entry for this manifest."""
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "category": self.category,
            "tags": list(self.tags),
            "license": self.license,
            "homepage": self.homepage,
            "repository": self.repository,
        }
        data.update(overrides)
        return ModuleMetadata(**data)
