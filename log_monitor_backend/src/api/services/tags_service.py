from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request

from src.api.models import Tag
from src.api.schemas.tags import TagCreate, TagOut, TagUpdate
from src.api.state import AppState, get_state

logger = logging.getLogger(__name__)


def _active_ids(state: AppState) -> set:
    snapshot = state.classifier.rules.snapshot()
    return {c.tag.id for tags in snapshot.by_device.values() for c in tags}


def _tag_to_out(tag: Tag, active_ids: set) -> TagOut:
    return TagOut(
        id=int(tag.id or 0),
        name=tag.name,
        device_id=tag.device_id,
        regexp=tag.regexp,
        compare_type=tag.compare_type,
        value=tag.value,
        array_index=tag.array_index,
        subject=tag.subject,
        severity_level=tag.severity_level,
        active=tag.id in active_ids,
        created_at=tag.created_at,
        updated_at=tag.updated_at,
    )


def _refresh_rules(state: AppState) -> None:
    try:
        state.classifier.refresh_rules()
    except Exception:
        logger.exception("Rule cache refresh failed after a tag change")


def _changes_from_payload(payload: TagUpdate) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_none=True, by_alias=False)
    # Enum members are stored by value.
    for key in ("compare_type", "severity_level"):
        if key in changes:
            changes[key] = changes[key].value
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    return changes


# PUBLIC_INTERFACE
def list_tags(request: Request, device_id: Optional[int] = None) -> List[TagOut]:
    """List tags in evaluation order, optionally for one device."""
    state = get_state(request.app)
    tags = state.stores.tags.list_tags(timeout=state.config.store_timeout_sec)
    if device_id is not None:
        tags = [t for t in tags if t.device_id == device_id]
    active = _active_ids(state)
    return [_tag_to_out(t, active) for t in tags]


# PUBLIC_INTERFACE
def get_tag(request: Request, tag_id: int) -> Optional[TagOut]:
    """Fetch a tag by id; returns None if not found."""
    state = get_state(request.app)
    tag = state.stores.tags.get_tag(tag_id, timeout=state.config.store_timeout_sec)
    return _tag_to_out(tag, _active_ids(state)) if tag else None


# PUBLIC_INTERFACE
def create_tag(request: Request, payload: TagCreate) -> TagOut:
    """Create a tag and refresh the rule cache so it applies to the next message."""
    state = get_state(request.app)
    created = state.stores.tags.create_tag(
        Tag(
            device_id=payload.device_id,
            name=payload.name.strip(),
            regexp=payload.regexp,
            compare_type=payload.compare_type.value,
            value=payload.value,
            array_index=payload.array_index,
            subject=payload.subject,
            severity_level=payload.severity_level.value,
        ),
        timeout=state.config.store_timeout_sec,
    )
    _refresh_rules(state)
    return _tag_to_out(created, _active_ids(state))


# PUBLIC_INTERFACE
def patch_tag(request: Request, tag_id: int, payload: TagUpdate) -> Optional[TagOut]:
    """Partial update of a tag. Returns None if not found."""
    state = get_state(request.app)
    changes = _changes_from_payload(payload)
    if not changes:
        return get_tag(request, tag_id)

    updated = state.stores.tags.update_tag(tag_id, changes, timeout=state.config.store_timeout_sec)
    if updated is None:
        return None
    _refresh_rules(state)
    return _tag_to_out(updated, _active_ids(state))


# PUBLIC_INTERFACE
def delete_tag(request: Request, tag_id: int) -> bool:
    """Delete a tag. Returns True if deleted, False if not found."""
    state = get_state(request.app)
    deleted = state.stores.tags.delete_tag(tag_id, timeout=state.config.store_timeout_sec)
    if deleted:
        _refresh_rules(state)
    return deleted
