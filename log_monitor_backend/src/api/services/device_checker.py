from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from src.api.schemas.messages import SendMessageRequest
from src.api.services.messages_service import ingest
from src.api.state import AppState

logger = logging.getLogger(__name__)

HEALTHCHECK_PATH = "/healthcheck"
CHECK_MESSAGE_TYPE = "error"
CHECK_COMPONENT = "General"


async def _run_in_thread(func, *args, **kwargs):
    """Run blocking store/classifier calls in a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)


async def _probe(client: httpx.AsyncClient, address: str) -> Optional[str]:
    """Return a problem description for the device, or None when it is healthy."""
    try:
        res = await client.get(f"http://{address}{HEALTHCHECK_PATH}")
    except httpx.HTTPError:
        logger.debug("Healthcheck request to %s failed", address, exc_info=True)
        return f"unable to connect to device {address}"
    if res.status_code != httpx.codes.OK:
        return f"device {address} status is not OK"
    return None


async def _report(state: AppState, address: str, problem: str) -> None:
    payload = SendMessageRequest(
        message=problem,
        message_type=CHECK_MESSAGE_TYPE,
        component=CHECK_COMPONENT,
        address=address,
    )
    await _run_in_thread(ingest, state, payload)


# PUBLIC_INTERFACE
async def check_devices_once(state: AppState, client: httpx.AsyncClient) -> int:
    """
    Probe every device in the directory once; unhealthy ones produce an error message.

    Returns the number of devices reported as unhealthy. One failing device never stops
    the sweep.
    """
    unhealthy = 0
    for address in state.classifier.devices.addresses():
        try:
            problem = await _probe(client, address)
            if problem is None:
                continue
            unhealthy += 1
            logger.info("Device check: %s", problem)
            await _report(state, address, problem)
        except Exception:
            logger.exception("Device check failed for address=%s", address)
    return unhealthy


# PUBLIC_INTERFACE
async def device_checker_loop(
    state: AppState,
    shutdown_event: asyncio.Event,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """
    Background loop that health-checks known devices over HTTP.

    Each sweep GETs http://{address}/healthcheck for every device in the directory and feeds
    failures through the normal message path (classify, persist, notify).
    """
    interval = max(1, int(state.config.device_check_interval_sec))
    logger.info(
        "Device checker started (interval=%ss, timeout=%ss)", interval, state.config.device_check_timeout_sec
    )

    async with httpx.AsyncClient(timeout=state.config.device_check_timeout_sec, transport=transport) as client:
        while not shutdown_event.is_set():
            tick_started = datetime.now(timezone.utc)
            try:
                await check_devices_once(state, client)
            except Exception:
                logger.exception("Device checker tick failed")

            elapsed = (datetime.now(timezone.utc) - tick_started).total_seconds()
            sleep_for = max(0.1, interval - elapsed)
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass

    logger.info("Device checker stopped")
