from __future__ import annotations

from fastapi import APIRouter, HTTPException, Path, Request, status

from src.api.db.stores import DeviceExistsError
from src.api.schemas.common import ErrorResponse
from src.api.schemas.devices import DeviceCreate, DeviceListResponse, DeviceOut, DeviceUpdate
from src.api.services import devices_service

router = APIRouter(prefix="/api/devices", tags=["Devices"])


def _require_text(value: str, field: str) -> None:
    if not value.strip():
        raise HTTPException(status_code=400, detail=f"{field} must not be empty")


@router.get(
    "",
    response_model=DeviceListResponse,
    summary="List devices",
    description="List all monitored devices.",
    operation_id="list_devices",
)
def list_devices(request: Request) -> DeviceListResponse:
    """List devices."""
    items = devices_service.list_devices(request)
    return DeviceListResponse(items=items, total=len(items))


@router.post(
    "",
    response_model=DeviceOut,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Create device",
    description="Register a device. Its address is used to attribute inbound messages and must be unique.",
    operation_id="create_device",
)
def create_device(request: Request, payload: DeviceCreate) -> DeviceOut:
    """Create a device."""
    _require_text(payload.name, "name")
    _require_text(payload.address, "address")
    try:
        return devices_service.create_device(request, payload)
    except DeviceExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get(
    "/{device_id}",
    response_model=DeviceOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get device",
    operation_id="get_device",
)
def get_device(request: Request, device_id: int = Path(..., description="Device id.")) -> DeviceOut:
    """Get a device by id."""
    device = devices_service.get_device(request, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="device not found")
    return device


@router.patch(
    "/{device_id}",
    response_model=DeviceOut,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Update device",
    description="Partially update a device.",
    operation_id="patch_device",
)
def patch_device(
    request: Request,
    payload: DeviceUpdate,
    device_id: int = Path(..., description="Device id."),
) -> DeviceOut:
    """Patch a device."""
    if payload.name is not None:
        _require_text(payload.name, "name")
    if payload.address is not None:
        _require_text(payload.address, "address")
    try:
        updated = devices_service.update_device(request, device_id, payload)
    except DeviceExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not updated:
        raise HTTPException(status_code=404, detail="device not found")
    return updated


@router.delete(
    "/{device_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete device",
    operation_id="delete_device",
)
def delete_device(request: Request, device_id: int = Path(..., description="Device id.")) -> None:
    """Delete a device."""
    if not devices_service.delete_device(request, device_id):
        raise HTTPException(status_code=404, detail="device not found")
    return None
