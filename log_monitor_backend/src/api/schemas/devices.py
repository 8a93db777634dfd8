from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DeviceBase(BaseModel):
    """Base fields for a monitored device."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Friendly display name for the device.")
    device_type: str = Field(..., description="Free-form device type (router, sensor, ...).", alias="deviceType")
    address: str = Field(..., description="Network address the device sends messages from; must be unique.")
    responsible: List[int] = Field(default_factory=list, description="Ids of the people responsible for the device.")


class DeviceCreate(DeviceBase):
    """Request body for creating a device."""


class DeviceUpdate(BaseModel):
    """Request body for a partial device update."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, description="Friendly display name.")
    device_type: Optional[str] = Field(default=None, description="Device type.", alias="deviceType")
    address: Optional[str] = Field(default=None, description="Network address.")
    responsible: Optional[List[int]] = Field(default=None, description="Responsible people ids.")


class DeviceOut(DeviceBase):
    """Response model representing a device."""

    id: int = Field(..., description="Device id.")
    created_at: Optional[datetime] = Field(default=None, description="UTC creation timestamp.", alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, description="UTC last update timestamp.", alias="updatedAt")


class DeviceListResponse(BaseModel):
    """Envelope for listing devices."""

    items: List[DeviceOut] = Field(..., description="List of devices.")
    total: int = Field(..., ge=0, description="Total number of devices returned.")
