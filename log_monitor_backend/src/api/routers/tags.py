from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query, Request, status

from src.api.schemas.common import ErrorResponse
from src.api.schemas.tags import TagCreate, TagListResponse, TagOut, TagUpdate
from src.api.services import tags_service

router = APIRouter(prefix="/api/tags", tags=["Tags"])


@router.get(
    "",
    response_model=TagListResponse,
    summary="List tags",
    description="List tags in evaluation order. Optionally filter to one deviceId.",
    operation_id="list_tags",
)
def list_tags(
    request: Request,
    device_id: Optional[int] = Query(default=None, alias="deviceId", description="Optional device filter."),
) -> TagListResponse:
    """List tags."""
    items = tags_service.list_tags(request, device_id=device_id)
    return TagListResponse(items=items, total=len(items))


@router.post(
    "",
    response_model=TagOut,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create tag",
    description="Create a tag. It applies to every message classified after this call returns.",
    operation_id="create_tag",
)
def create_tag(request: Request, payload: TagCreate) -> TagOut:
    """Create a tag."""
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="name must not be empty")
    return tags_service.create_tag(request, payload)


@router.get(
    "/{tag_id}",
    response_model=TagOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get tag",
    operation_id="get_tag",
)
def get_tag(request: Request, tag_id: int = Path(..., description="Tag id.")) -> TagOut:
    """Get a tag by id."""
    tag = tags_service.get_tag(request, tag_id)
    if not tag:
        raise HTTPException(status_code=404, detail="tag not found")
    return tag


@router.patch(
    "/{tag_id}",
    response_model=TagOut,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update tag",
    description="Partially update a tag.",
    operation_id="patch_tag",
)
def patch_tag(
    request: Request,
    payload: TagUpdate,
    tag_id: int = Path(..., description="Tag id."),
) -> TagOut:
    """Patch a tag."""
    if payload.name is not None and not payload.name.strip():
        raise HTTPException(status_code=400, detail="name must not be empty")
    updated = tags_service.patch_tag(request, tag_id, payload)
    if not updated:
        raise HTTPException(status_code=404, detail="tag not found")
    return updated


@router.delete(
    "/{tag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete tag",
    operation_id="delete_tag",
)
def delete_tag(request: Request, tag_id: int = Path(..., description="Tag id.")) -> None:
    """Delete a tag."""
    if not tags_service.delete_tag(request, tag_id):
        raise HTTPException(status_code=404, detail="tag not found")
    return None
