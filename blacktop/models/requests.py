"""Request models for API endpoints."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class InstallRequest(BaseModel):
    """Body of ``POST /api/plugins/{id}/install``.

    The body itself is optional; without one the latest version is installed.
    """

    version: Optional[str] = Field(None, description="Version to install (latest when omitted)")
    source: Optional[str] = Field(
        None, description="Package spec or local directory; defaults to the plugin id"
    )

    @field_validator("version", "source")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class PublishRequest(BaseModel):
    """Body of ``POST /api/messaging/publish/{topic}``."""

    message: Any = Field(default_factory=dict, description="Payload; non-object values are wrapped")
    broadcast: bool = Field(False, description="Also deliver to every topic subscriber")


class PluginConfigUpdate(BaseModel):
    """Request body for updating plugin configuration."""

    config: Dict[str, Any]
