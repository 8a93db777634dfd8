from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.config import BackendConfig, load_config
from src.api.db.stores import StoreUnavailableError
from src.api.routers import devices, health, messages, tags
from src.api.services.device_checker import device_checker_loop
from src.api.state import AppState, build_state, get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health, store connectivity and cache state."},
    {"name": "Devices", "description": "CRUD for monitored devices (refreshes the device directory)."},
    {"name": "Tags", "description": "CRUD for per-device classification tags (refreshes the rule cache)."},
    {"name": "Messages", "description": "Device message ingestion and message history."},
]

logger = logging.getLogger(__name__)


def _env_frontend_url() -> str | None:
    return os.getenv("FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


def _allowed_origins() -> List[str]:
    origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    frontend_url = _env_frontend_url()
    if frontend_url:
        origins.append(frontend_url)
    origins.extend(_env_cors_extra_origins())
    # De-dupe while preserving order
    seen = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


def _initial_refresh(state: AppState) -> None:
    """Load both caches once; a failure is logged and the caches stay empty until the next refresh."""
    for name, refresh in (
        ("devices", state.classifier.refresh_devices),
        ("rules", state.classifier.refresh_rules),
    ):
        try:
            refresh()
        except Exception:
            logger.exception("Initial %s refresh failed", name)


# PUBLIC_INTERFACE
def create_app(config: Optional[BackendConfig] = None, state: Optional[AppState] = None) -> FastAPI:
    """Build the FastAPI app with its own stores, caches and background device checker."""
    config = config if config is not None else (state.config if state is not None else load_config())

    app = FastAPI(
        title="Device Log Monitor API",
        description=(
            "Ingests device messages, classifies them against per-device tags and keeps "
            "recovery tags paired with tripped threshold tags so alerts clear themselves."
        ),
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    init_state(app, state if state is not None else build_state(config))

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: connect stores, load caches and start the device checker."""
        st = get_state(app)
        await asyncio.to_thread(st.stores.connect)
        await asyncio.to_thread(_initial_refresh, st)

        if st.config.device_check_enabled:
            app.state._checker_shutdown = asyncio.Event()
            st.checker_task = asyncio.create_task(device_checker_loop(st, app.state._checker_shutdown))

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: stop the device checker and close store connections."""
        st = get_state(app)

        checker_shutdown = getattr(app.state, "_checker_shutdown", None)
        if checker_shutdown is not None:
            checker_shutdown.set()
        checker_task = st.checker_task
        if checker_task is not None:
            try:
                await asyncio.wait_for(checker_task, timeout=5.0)
            except Exception:
                logger.exception("Error stopping device checker task")

        st.stores.close()

    @app.exception_handler(StoreUnavailableError)
    async def _store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error("Store unavailable while handling %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "store unavailable", "code": "store_unavailable"})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(devices.router)
    app.include_router(tags.router)
    app.include_router(messages.router)
    return app


_config = load_config()
logging.basicConfig(
    level=getattr(logging, _config.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)

app = create_app(_config)
