from __future__ import annotations

import asyncio

import httpx
import pytest

from src.api.config import load_config
from src.api.models import Tag
from src.api.services.device_checker import check_devices_once, device_checker_loop
from src.api.services.notifications import RecordingNotifier
from src.api.state import AppState, build_state


def _health_handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "10.0.0.2":
        raise httpx.ConnectError("connection refused", request=request)
    if host == "10.0.0.3":
        return httpx.Response(503, text="degraded")
    assert request.url.path == "/healthcheck"
    return httpx.Response(200, text="ok")


@pytest.fixture
def checker_state(monkeypatch: pytest.MonkeyPatch, make_device) -> AppState:
    monkeypatch.delenv("BACKEND_MONGO_URI", raising=False)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    state = build_state(load_config(), notifier=RecordingNotifier())
    for n, address in enumerate(["10.0.0.1", "10.0.0.2", "10.0.0.3"], start=1):
        state.stores.devices.create_device(make_device(name=f"dev{n}", address=address))
    state.classifier.refresh_devices()
    return state


@pytest.mark.anyio
async def test_unhealthy_devices_become_error_messages(checker_state: AppState):
    async with httpx.AsyncClient(transport=httpx.MockTransport(_health_handler)) as client:
        unhealthy = await check_devices_once(checker_state, client)

    assert unhealthy == 2
    messages = checker_state.stores.messages.list_messages()
    bodies = sorted(m.message for m in messages)
    assert bodies == ["device 10.0.0.3 status is not OK", "unable to connect to device 10.0.0.2"]
    assert {m.message_type for m in messages} == {"error"}
    assert {m.component for m in messages} == {"General"}
    assert {m.device_id for m in messages} == {2, 3}


@pytest.mark.anyio
async def test_checker_messages_are_classified(checker_state: AppState):
    checker_state.stores.tags.create_tag(
        Tag(
            device_id=2,
            name="unreachable",
            regexp="unable to connect",
            compare_type="=",
            value="unable to connect",
            array_index=0,
            subject="DEVICE_DOWN",
            severity_level="critical",
        )
    )
    checker_state.classifier.refresh_rules()

    async with httpx.AsyncClient(transport=httpx.MockTransport(_health_handler)) as client:
        await check_devices_once(checker_state, client)

    alerts = checker_state.notifier.alerts
    assert [(device.id, outcome.subject) for device, outcome in alerts] == [(2, "DEVICE_DOWN")]
    stored = checker_state.stores.messages.list_messages(device_id=2)
    assert stored[0].severity_level == "critical"


@pytest.mark.anyio
async def test_checker_loop_stops_on_shutdown(checker_state: AppState):
    shutdown = asyncio.Event()
    task = asyncio.create_task(
        device_checker_loop(checker_state, shutdown, transport=httpx.MockTransport(_health_handler))
    )

    for _ in range(100):
        if checker_state.stores.messages.list_messages():
            break
        await asyncio.sleep(0.02)

    shutdown.set()
    await asyncio.wait_for(task, timeout=5)

    assert len(checker_state.stores.messages.list_messages()) == 2
