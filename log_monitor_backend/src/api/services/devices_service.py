from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import Request

from src.api.models import Device
from src.api.schemas.devices import DeviceCreate, DeviceOut, DeviceUpdate
from src.api.state import AppState, get_state

logger = logging.getLogger(__name__)


def _device_to_out(device: Device) -> DeviceOut:
    return DeviceOut(
        id=device.id,
        name=device.name,
        device_type=device.device_type,
        address=device.address,
        responsible=list(device.responsible),
        created_at=device.created_at,
        updated_at=device.updated_at,
    )


def _refresh_devices(state: AppState) -> None:
    # The mutation is already committed; a failed refresh keeps the previous directory
    # until the next successful one.
    try:
        state.classifier.refresh_devices()
    except Exception:
        logger.exception("Device directory refresh failed after a device change")


def _timeout(state: AppState) -> float:
    return state.config.store_timeout_sec


# PUBLIC_INTERFACE
def list_devices(request: Request) -> List[DeviceOut]:
    """Return all devices from the device store."""
    state = get_state(request.app)
    return [_device_to_out(d) for d in state.stores.devices.list_devices(timeout=_timeout(state))]


# PUBLIC_INTERFACE
def get_device(request: Request, device_id: int) -> Optional[DeviceOut]:
    """Get a single device by id. Returns None if not found."""
    state = get_state(request.app)
    device = state.stores.devices.get_device(device_id, timeout=_timeout(state))
    return _device_to_out(device) if device else None


# PUBLIC_INTERFACE
def create_device(request: Request, payload: DeviceCreate) -> DeviceOut:
    """Create a device and refresh the device directory. Raises DeviceExistsError on a duplicate address."""
    state = get_state(request.app)
    created = state.stores.devices.create_device(
        Device(
            id=0,
            name=payload.name.strip(),
            device_type=payload.device_type.strip(),
            address=payload.address.strip(),
            responsible=tuple(payload.responsible),
        ),
        timeout=_timeout(state),
    )
    _refresh_devices(state)
    return _device_to_out(created)


# PUBLIC_INTERFACE
def update_device(request: Request, device_id: int, payload: DeviceUpdate) -> Optional[DeviceOut]:
    """Apply a partial update. Returns None if not found."""
    state = get_state(request.app)
    changes = payload.model_dump(exclude_none=True, by_alias=False)
    for key in ("name", "device_type", "address"):
        if key in changes:
            changes[key] = changes[key].strip()

    if not changes:
        device = state.stores.devices.get_device(device_id, timeout=_timeout(state))
        return _device_to_out(device) if device else None

    updated = state.stores.devices.update_device(device_id, changes, timeout=_timeout(state))
    if updated is None:
        return None
    _refresh_devices(state)
    return _device_to_out(updated)


# PUBLIC_INTERFACE
def delete_device(request: Request, device_id: int) -> bool:
    """Delete a device. Returns True if deleted, False if not found."""
    state = get_state(request.app)
    deleted = state.stores.devices.delete_device(device_id, timeout=_timeout(state))
    if deleted:
        _refresh_devices(state)
    return deleted
