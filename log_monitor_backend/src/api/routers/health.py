from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.api.config import sanitize_mongo_uri
from src.api.schemas.common import HealthResponse, utc_now
from src.api.state import get_state

router = APIRouter(tags=["Health"])


class StoreHealthResponse(BaseModel):
    """Store connectivity plus the state of the in-memory caches."""

    ok: bool = Field(..., description="Whether the backing store answered a ping.")
    store_backend: str = Field(..., description="Configured store backend (mongo|memory).")
    mongo_uri_sanitized: Optional[str] = Field(default=None, description="MongoDB URI with credentials masked.")
    devices_cached: int = Field(..., ge=0, description="Devices in the current directory snapshot.")
    devices_generation: int = Field(..., ge=0, description="Refresh ticket of the device snapshot (0 = never loaded).")
    rules_loaded: int = Field(..., ge=0, description="Tags read from the store on the last refresh.")
    rules_active: int = Field(..., ge=0, description="Tags that compiled and are being evaluated.")
    rules_generation: int = Field(..., ge=0, description="Refresh ticket of the rule snapshot (0 = never loaded).")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/store",
    response_model=StoreHealthResponse,
    summary="Store and cache diagnostics",
    description="Pings the configured store and reports device/rule cache sizes. Credentials are masked.",
    operation_id="store_health_check",
)
def store_health_check(request: Request) -> StoreHealthResponse:
    """Report store connectivity and rule/device cache state."""
    state = get_state(request.app)
    classifier = state.classifier
    rules = classifier.rules.snapshot()
    devices = classifier.devices.snapshot()

    return StoreHealthResponse(
        ok=state.stores.ping(),
        store_backend=state.config.store_backend,
        mongo_uri_sanitized=sanitize_mongo_uri(state.config.mongo_uri) if state.config.mongo_uri else None,
        devices_cached=len(devices.by_id),
        devices_generation=classifier.devices.generation,
        rules_loaded=rules.source_count,
        rules_active=rules.active_count,
        rules_generation=classifier.rules.generation,
        timestamp=utc_now().isoformat(),
        meta={
            "rulesLoadedAt": rules.loaded_at.isoformat() if rules.loaded_at else None,
            "devicesLoadedAt": devices.loaded_at.isoformat() if devices.loaded_at else None,
        },
    )
