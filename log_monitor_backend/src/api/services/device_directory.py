from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from src.api.db.stores import DeviceStore
from src.api.models import UNKNOWN_DEVICE, Device
from src.api.schemas.common import utc_now
from src.api.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceSnapshot:
    """Known devices indexed by id and by network address."""

    by_id: Mapping[int, Device] = field(default_factory=lambda: MappingProxyType({}))
    by_address: Mapping[str, Device] = field(default_factory=lambda: MappingProxyType({}))
    loaded_at: Optional[datetime] = None


def build_device_snapshot(devices: List[Device]) -> DeviceSnapshot:
    by_id = {}
    by_address = {}
    for device in devices:
        by_id[device.id] = device
        if device.address in by_address:
            logger.warning(
                "Address %s is shared by devices %s and %s; attributing it to %s",
                device.address,
                by_address[device.address].id,
                device.id,
                device.id,
            )
        by_address[device.address] = device
    return DeviceSnapshot(
        by_id=MappingProxyType(by_id),
        by_address=MappingProxyType(by_address),
        loaded_at=utc_now(),
    )


class DeviceDirectory(SnapshotCache[DeviceSnapshot]):
    """Read-only view of the device store, rebuilt wholesale on refresh."""

    def __init__(self, store: DeviceStore, *, timeout: Optional[float] = None):
        super().__init__(DeviceSnapshot())
        self._store = store
        self._timeout = timeout

    # PUBLIC_INTERFACE
    def refresh(self) -> DeviceSnapshot:
        """Reload all devices; store errors propagate and keep the previous snapshot."""
        ticket = self._begin_refresh()
        devices = self._store.list_devices(timeout=self._timeout)
        snapshot, published = self._publish(ticket, build_device_snapshot(devices))
        if published:
            logger.info("Device directory refreshed: %s devices", len(snapshot.by_id))
        return snapshot

    # PUBLIC_INTERFACE
    def lookup(self, device_id: int) -> Tuple[Optional[Device], bool]:
        """Return (device, found) from the current snapshot."""
        device = self.snapshot().by_id.get(device_id)
        return device, device is not None

    # PUBLIC_INTERFACE
    def lookup_address(self, address: str) -> Optional[Device]:
        return self.snapshot().by_address.get(address)

    # PUBLIC_INTERFACE
    def describe(self, device_id: int) -> Device:
        """Return the device, or the 'unknown device' placeholder when it is not known."""
        device, found = self.lookup(device_id)
        return device if found else UNKNOWN_DEVICE

    def addresses(self) -> List[str]:
        return list(self.snapshot().by_address)
