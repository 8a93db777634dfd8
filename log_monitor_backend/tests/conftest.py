from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from src.api.db.memory import InMemoryStores
from src.api.models import Device, Tag
from src.api.services.classifier import MessageClassifier
from src.api.services.notifications import RecordingNotifier


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def stores() -> InMemoryStores:
    """Fresh memory-backed device/tag/message stores."""
    return InMemoryStores()


@pytest.fixture
def classifier(stores: InMemoryStores) -> MessageClassifier:
    """Classifier wired to the memory stores (caches start empty; call refresh_* after seeding)."""
    return MessageClassifier.from_stores(stores.tags, stores.devices)


@pytest.fixture
def make_tag() -> Callable[..., Tag]:
    """Factory for tag records with sensible defaults."""

    def _make(**overrides) -> Tag:
        fields = {
            "device_id": 1,
            "name": "temperature",
            "regexp": r"temp=(\d+)",
            "compare_type": ">",
            "value": "80",
            "array_index": 1,
            "subject": "HIGH_TEMP",
            "severity_level": "critical",
        }
        fields.update(overrides)
        return Tag(**fields)

    return _make


@pytest.fixture
def make_device() -> Callable[..., Device]:
    def _make(**overrides) -> Device:
        fields = {
            "id": 0,
            "name": "core-switch",
            "device_type": "switch",
            "address": "10.0.0.1",
            "responsible": (7,),
        }
        fields.update(overrides)
        return Device(**fields)

    return _make


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch, notifier: RecordingNotifier):
    """
    FastAPI app on the memory backend with the device checker disabled.

    httpx's ASGITransport does not run lifespan events, so nothing here depends on startup:
    the state is wired by create_app and the caches are filled by the refresh that every
    device/tag mutation performs.
    """
    monkeypatch.delenv("BACKEND_MONGO_URI", raising=False)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("DEVICE_CHECK_ENABLED", "false")

    from src.api.config import load_config
    from src.api.main import create_app
    from src.api.state import build_state

    config = load_config()
    return create_app(state=build_state(config, notifier=notifier))


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client bound to the FastAPI ASGI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def create_test_device(async_client: httpx.AsyncClient) -> int:
    """Create a device at 10.0.0.1 via the API and return its id."""
    payload = {
        "name": "Test Sensor",
        "deviceType": "sensor",
        "address": "10.0.0.1",
        "responsible": [1, 2],
    }
    res = await async_client.post("/api/devices", json=payload)
    assert res.status_code == 201, res.text
    data = res.json()
    assert data["id"]
    return data["id"]
