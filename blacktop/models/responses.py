"""Uniform response envelope for the HTTP API."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ApiResponse(BaseModel):
    """``{success, data?, error?, message?, timestamp}``"""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None
    timestamp: str = Field(default_factory=_now)

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> dict:
        return cls(success=True, data=data, message=message).model_dump(exclude_none=True)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None) -> dict:
        return cls(success=False, error=error, message=message).model_dump(exclude_none=True)
