from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from src.api.schemas.messages import (
    ClassificationOut,
    MessageListResponse,
    MessageTypeCountResponse,
    MonthReportResponse,
    SendMessageRequest,
)
from src.api.services import messages_service, reports_service

router = APIRouter(prefix="/api/messages", tags=["Messages"])


@router.post(
    "/send_msg",
    response_model=ClassificationOut,
    summary="Ingest a device message",
    description=(
        "Attribute the message to a device by address, classify it against the device's tags, "
        "store it and dispatch a notification when a tag matched."
    ),
    operation_id="send_message",
)
def send_message(request: Request, payload: SendMessageRequest) -> ClassificationOut:
    """Ingest one device message."""
    return messages_service.send_message(request, payload)


@router.get(
    "",
    response_model=MessageListResponse,
    summary="List messages",
    description="List stored messages newest first, with filters: deviceId and time range.",
    operation_id="list_messages",
)
def list_messages(
    request: Request,
    device_id: Optional[int] = Query(default=None, alias="deviceId"),
    start: Optional[datetime] = Query(default=None, description="ISO datetime start (inclusive)"),
    end: Optional[datetime] = Query(default=None, description="ISO datetime end (inclusive)"),
    limit: int = Query(100, ge=1, le=1000),
) -> MessageListResponse:
    """List messages."""
    items = messages_service.list_messages(request, device_id=device_id, start=start, end=end, limit=limit)
    return MessageListResponse(items=items, total=len(items))


@router.get(
    "/count_by_message_type",
    response_model=MessageTypeCountResponse,
    summary="Count messages of a type per device",
    description="Number of stored messages with the given message type, per device.",
    operation_id="count_messages_by_type",
)
def count_by_message_type(
    request: Request,
    message_type: str = Query(..., min_length=1, alias="messageType", description="Message type to count."),
) -> MessageTypeCountResponse:
    """Per-device message counts for one message type."""
    return reports_service.count_by_message_type(request, message_type)


@router.get(
    "/month_report",
    response_model=MonthReportResponse,
    summary="Monthly message report",
    description=(
        "Daily volume, criticality and component statistics per device and message type "
        "over the last `days` days (30 by default)."
    ),
    operation_id="month_report",
)
def month_report(
    request: Request,
    days: int = Query(reports_service.DEFAULT_REPORT_DAYS, ge=1, le=366, description="Report window in days."),
    min_messages: int = Query(0, ge=0, alias="minMessages", description="Drop rows with fewer messages."),
) -> MonthReportResponse:
    """Monthly report."""
    return reports_service.month_report(request, days=days, min_messages=min_messages)
