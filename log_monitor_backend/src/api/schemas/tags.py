from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.api.schemas.common import CompareType, Severity


class TagBase(BaseModel):
    """Common fields for a tag (a per-device classification rule)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Human-friendly tag name.")
    device_id: int = Field(..., description="Device the tag applies to.", alias="deviceId")
    regexp: str = Field(..., description="Regular expression searched for in the message body.")
    compare_type: CompareType = Field(
        ...,
        description="'=' compares text; '<' and '>' compare numbers and maintain a recovery tag.",
        alias="compareType",
    )
    value: str = Field(..., description="Operand the extracted capture is compared with.")
    array_index: int = Field(
        0,
        ge=0,
        description="Capture group supplying the compared value (0 is the whole match).",
        alias="arrayIndex",
    )
    subject: str = Field(..., description="Alert subject when the tag matches. 'OK' is reserved for recovery tags.")
    severity_level: Severity = Field(
        Severity.warning, description="Severity given to matching messages.", alias="severityLevel"
    )


class TagCreate(TagBase):
    """Request model for creating a tag."""


class TagUpdate(BaseModel):
    """Request model for a partial tag update (PATCH)."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, description="Human-friendly tag name.")
    device_id: Optional[int] = Field(default=None, description="Device the tag applies to.", alias="deviceId")
    regexp: Optional[str] = Field(default=None, description="Regular expression.")
    compare_type: Optional[CompareType] = Field(default=None, description="Comparison operator.", alias="compareType")
    value: Optional[str] = Field(default=None, description="Comparison operand.")
    array_index: Optional[int] = Field(default=None, ge=0, description="Capture group index.", alias="arrayIndex")
    subject: Optional[str] = Field(default=None, description="Alert subject.")
    severity_level: Optional[Severity] = Field(default=None, description="Severity level.", alias="severityLevel")


class TagOut(BaseModel):
    """Response model for a tag.

    Severity and compare type are plain strings here: stored tags may carry values the
    request models would reject, and those are still listed (they are skipped by the
    compiler instead).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., description="Tag id.")
    name: str = Field(..., description="Human-friendly tag name.")
    device_id: int = Field(..., description="Device the tag applies to.", alias="deviceId")
    regexp: str = Field(..., description="Regular expression.")
    compare_type: str = Field(..., description="Comparison operator.", alias="compareType")
    value: str = Field(..., description="Comparison operand.")
    array_index: int = Field(..., description="Capture group index.", alias="arrayIndex")
    subject: str = Field(..., description="Alert subject.")
    severity_level: str = Field(..., description="Severity level.", alias="severityLevel")
    active: bool = Field(..., description="Whether the tag compiled and is in the active rule set.")
    created_at: Optional[datetime] = Field(default=None, description="UTC creation timestamp.", alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, description="UTC last update timestamp.", alias="updatedAt")


class TagListResponse(BaseModel):
    """Envelope for listing tags."""

    items: List[TagOut] = Field(..., description="List of tags in evaluation order.")
    total: int = Field(..., ge=0, description="Total count of tags returned.")
