"""Module metadata model - the catalog entry describing a plugin or UI module."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ModuleType(str, Enum):
    """Kind of module."""

    BACKEND = "backend"
    FRONTEND_UI = "frontend-ui"
    CORE = "core"


# Front-end flavours used by older catalogs
_MODULE_TYPE_ALIASES = {
    "frontend-react": ModuleType.FRONTEND_UI.value,
    "frontend-flutter": ModuleType.FRONTEND_UI.value,
}


class PricingType(str, Enum):
    FREE = "free"
    PAID = "paid"
    SUBSCRIPTION = "subscription"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


class TerminologyMode(str, Enum):
    """Vocabulary used by the console UI."""

    MILITARY = "military"
    CIVILIAN = "civilian"
    BOTH = "both"


def parse_module_type(value) -> ModuleType:
    """Parse a module type string, accepting legacy front-end aliases."""
    if isinstance(value, ModuleType):
        return value
    return ModuleType(_MODULE_TYPE_ALIASES.get(value, value))


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class ModulePricing(_CamelModel):
    """Pricing of a marketplace module."""

    type: PricingType = PricingType.FREE
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    billing_period: Optional[BillingPeriod] = None


class ModuleMetadata(_CamelModel):
    """Catalog entry for a module, independent of whether it is loaded."""

    id: str = Field(..., min_length=1, description="Stable module identifier")
    name: str = Field(default="", description="Human-readable name")
    type: ModuleType = Field(default=ModuleType.BACKEND)
    version: str = Field(default="1.0.0", description="Semantic version")
    description: str = ""
    author: str = ""
    category: str = "general"
    tags: List[str] = Field(default_factory=list)
    enabled: bool = False
    installed: bool = False
    install_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    size: int = 0
    repository: Optional[str] = None
    homepage: Optional[str] = None
    license: str = "UNLICENSED"
    screenshots: List[str] = Field(default_factory=list)
    pricing: Optional[ModulePricing] = None
    trusted: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return _MODULE_TYPE_ALIASES.get(v, v)
        return v

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: List[str]) -> List[str]:
        seen = []
        for tag in v:
            if tag not in seen:
                seen.append(tag)
        return seen

    @model_validator(mode="after")
    def default_name(self):
        if not self.name:
            self.name = self.id
        return self

    def to_dict(self) -> dict:
        """Serialize for API responses (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True)
