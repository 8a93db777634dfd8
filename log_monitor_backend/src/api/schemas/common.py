from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Severity levels carried by messages and tags."""

    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class CompareType(str, Enum):
    """Comparison operators a tag can apply to its extracted value."""

    eq = "="
    lt = "<"
    gt = ">"

    @property
    def is_threshold(self) -> bool:
        return self in (CompareType.lt, CompareType.gt)

    def flipped(self) -> "CompareType":
        """Return the opposite threshold operator; '=' has no opposite and is returned as is."""
        if self is CompareType.lt:
            return CompareType.gt
        if self is CompareType.gt:
            return CompareType.lt
        return self


class HealthResponse(BaseModel):
    """Response model for health endpoints."""

    status: str = Field(..., description="High-level health status string (e.g., 'ok').")
    message: str = Field(..., description="Human-readable status message.")
    timestamp: datetime = Field(..., description="UTC timestamp at time of response.")


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    detail: str = Field(..., description="Human-readable error details.")
    code: Optional[str] = Field(default=None, description="Optional machine-readable error code.")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional metadata for debugging.")


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
