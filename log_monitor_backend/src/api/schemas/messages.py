from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """A message as posted by a device (or the device checker)."""

    message: str = Field(..., min_length=1, description="Free-text message body.")
    message_type: str = Field(..., min_length=1, description="Message type label, e.g. 'error'.")
    component: str = Field(..., min_length=1, description="Device component that produced the message.")
    address: str = Field(..., min_length=1, description="Network address of the sending device.")


class ClassificationOut(BaseModel):
    """Outcome of classifying one inbound message."""

    device_id: int = Field(..., description="Resolved device id (-1 when the address is unknown).")
    device_name: str = Field(..., description="Resolved device name.")
    notify: bool = Field(..., description="Whether a tag matched and a notification was dispatched.")
    subject: str = Field("", description="Subject of the matching tag.")
    text: str = Field("", description="Alert text (the raw message body).")
    severity_level: str = Field(..., description="Severity stored with the message.")
    tag_id: Optional[int] = Field(default=None, description="Id of the matching tag.")
    hysteresis: Optional[str] = Field(default=None, description="Recovery-tag action taken, if any.")


class MessageOut(BaseModel):
    """A persisted message enriched with directory data about its device."""

    device_id: int = Field(..., description="Device id.")
    name: str = Field(..., description="Device name ('unknown device' if not in the directory).")
    device_type: str = Field(..., description="Device type.")
    address: str = Field(..., description="Device address.")
    responsible: List[int] = Field(default_factory=list, description="Responsible people ids.")
    message: str = Field(..., description="Message body.")
    message_type: str = Field(..., description="Message type.")
    severity_level: str = Field(..., description="Severity level after classification.")
    component: str = Field(..., description="Component label.")
    got_at: datetime = Field(..., description="UTC receipt timestamp.")


class MessageListResponse(BaseModel):
    """Envelope for listing messages."""

    items: List[MessageOut] = Field(..., description="Messages, newest first.")
    total: int = Field(..., ge=0, description="Total count returned.")


class MessageTypeCountOut(BaseModel):
    """Number of stored messages of one type from one device."""

    device_id: int = Field(..., description="Device id.")
    name: str = Field(..., description="Device name ('unknown device' if not in the directory).")
    device_type: str = Field(..., description="Device type.")
    address: str = Field(..., description="Device address.")
    responsible: List[int] = Field(default_factory=list, description="Responsible people ids.")
    count: int = Field(..., ge=0, description="Messages of the requested type.")


class MessageTypeCountResponse(BaseModel):
    """Envelope for per-device message counts."""

    message_type: str = Field(..., description="Message type that was counted.")
    items: List[MessageTypeCountOut] = Field(..., description="One row per device, ordered by device id.")
    total: int = Field(..., ge=0, description="Number of rows.")


class MonthReportRow(BaseModel):
    """Daily volume statistics for one device and message type over the report window."""

    device_id: int = Field(..., description="Device id.")
    name: str = Field(..., description="Device name ('unknown device' if not in the directory).")
    message_type: str = Field(..., description="Message type.")
    active_days: int = Field(..., ge=0, description="Days with at least one message.")
    total_messages: int = Field(..., ge=0, description="Messages in the window.")
    avg_daily_messages: float = Field(..., description="Mean messages per active day.")
    max_daily_messages: int = Field(..., ge=0, description="Busiest day.")
    median_daily_messages: float = Field(..., description="Median messages per active day.")
    total_critical: int = Field(..., ge=0, description="Messages classified as critical.")
    max_daily_critical: int = Field(..., ge=0, description="Most critical messages on one day.")
    max_daily_components: int = Field(..., ge=0, description="Most distinct components seen on one day.")
    most_active_component: Optional[str] = Field(default=None, description="Component with the most messages.")
    first_critical_at: Optional[datetime] = Field(default=None, description="First critical message in the window.")
    last_critical_at: Optional[datetime] = Field(default=None, description="Last critical message in the window.")
    avg_critical_interval_sec: Optional[float] = Field(
        default=None, description="Mean seconds between consecutive critical messages."
    )
    critical_percentage: float = Field(..., description="Share of critical messages, in percent (2 decimals).")
    volume_rank: int = Field(..., ge=1, description="Dense rank by total_messages across all rows (1 = busiest).")


class MonthReportResponse(BaseModel):
    """Envelope for the monthly report."""

    start: datetime = Field(..., description="UTC start of the report window.")
    items: List[MonthReportRow] = Field(..., description="Rows ordered by device id, busiest type first.")
    total: int = Field(..., ge=0, description="Number of rows.")
