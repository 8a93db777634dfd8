from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Request

from src.api.models import UNKNOWN_DEVICE_ID, ClassificationOutcome, Message
from src.api.schemas.common import Severity, utc_now
from src.api.schemas.messages import ClassificationOut, MessageOut, SendMessageRequest
from src.api.state import AppState, get_state

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY = Severity.info.value


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# PUBLIC_INTERFACE
def ingest(state: AppState, payload: SendMessageRequest) -> ClassificationOutcome:
    """
    Attribute, classify, persist and (when a tag matched) notify one inbound message.

    Unknown addresses are attributed to device id -1; such messages are still stored.
    Store errors while persisting propagate to the caller.
    """
    classifier = state.classifier
    device_id = classifier.resolve_device_id(payload.address)
    if device_id is None:
        logger.debug("Message from unknown address %s", payload.address)
        device_id = UNKNOWN_DEVICE_ID

    message = Message(
        device_id=device_id,
        message=payload.message,
        message_type=payload.message_type,
        severity_level=DEFAULT_SEVERITY,
        component=payload.component,
        got_at=utc_now(),
    )
    outcome = classifier.classify(message)

    state.stores.messages.insert_message(outcome.message, timeout=state.config.store_timeout_sec)

    if outcome.notify:
        try:
            state.notifier.send(classifier.describe_device(device_id), outcome)
        except Exception:
            logger.exception("Notification dispatch failed for device %s", device_id)
    return outcome


# PUBLIC_INTERFACE
def send_message(request: Request, payload: SendMessageRequest) -> ClassificationOut:
    """HTTP entry point for device messages."""
    state = get_state(request.app)
    outcome = ingest(state, payload)
    device = state.classifier.describe_device(outcome.message.device_id)
    return ClassificationOut(
        device_id=outcome.message.device_id,
        device_name=device.name,
        notify=outcome.notify,
        subject=outcome.subject,
        text=outcome.text,
        severity_level=outcome.message.severity_level,
        tag_id=outcome.tag_id,
        hysteresis=outcome.hysteresis,
    )


# PUBLIC_INTERFACE
def list_messages(
    request: Request,
    device_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
) -> List[MessageOut]:
    """List persisted messages newest first, enriched from the device directory."""
    state = get_state(request.app)
    messages = state.stores.messages.list_messages(
        device_id=device_id,
        start=_as_utc(start),
        end=_as_utc(end),
        limit=limit,
        timeout=state.config.store_timeout_sec,
    )

    out: List[MessageOut] = []
    for m in messages:
        device = state.classifier.describe_device(m.device_id)
        out.append(
            MessageOut(
                device_id=m.device_id,
                name=device.name,
                device_type=device.device_type,
                address=device.address,
                responsible=list(device.responsible),
                message=m.message,
                message_type=m.message_type,
                severity_level=m.severity_level,
                component=m.component,
                got_at=m.got_at,
            )
        )
    return out
