"""In-process store backend used for local runs and the test-suite."""

from __future__ import annotations

import itertools
import logging
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple

from src.api.db.stores import DeviceExistsError
from src.api.models import DailyMessageStats, Device, Message, Tag
from src.api.schemas.common import Severity, utc_now

logger = logging.getLogger(__name__)

CRITICAL = Severity.critical.value

_DEVICE_FIELDS = ("name", "device_type", "address", "responsible")
_TAG_FIELDS = ("device_id", "name", "regexp", "compare_type", "value", "array_index", "subject", "severity_level")


def _check_fields(changes: Dict[str, Any], allowed: tuple) -> None:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValueError(f"unknown field(s): {', '.join(sorted(unknown))}")


class InMemoryDeviceStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._ids = itertools.count(1)
        self._devices: Dict[int, Device] = {}

    def list_devices(self, *, timeout: Optional[float] = None) -> List[Device]:
        with self._lock:
            return sorted(self._devices.values(), key=lambda d: d.id)

    def get_device(self, device_id: int, *, timeout: Optional[float] = None) -> Optional[Device]:
        with self._lock:
            return self._devices.get(int(device_id))

    def _address_taken(self, address: str, exclude_id: Optional[int] = None) -> bool:
        return any(d.address == address and d.id != exclude_id for d in self._devices.values())

    def create_device(self, device: Device, *, timeout: Optional[float] = None) -> Device:
        with self._lock:
            if self._address_taken(device.address):
                raise DeviceExistsError(f"device with address {device.address!r} already exists")
            now = utc_now()
            created = replace(
                device,
                id=next(self._ids),
                responsible=tuple(int(r) for r in device.responsible),
                created_at=now,
                updated_at=now,
            )
            self._devices[created.id] = created
            return created

    def update_device(
        self, device_id: int, changes: Dict[str, Any], *, timeout: Optional[float] = None
    ) -> Optional[Device]:
        _check_fields(changes, _DEVICE_FIELDS)
        with self._lock:
            existing = self._devices.get(int(device_id))
            if existing is None:
                return None
            if "address" in changes and self._address_taken(changes["address"], exclude_id=existing.id):
                raise DeviceExistsError(f"device with address {changes['address']!r} already exists")
            values = dict(changes)
            if "responsible" in values:
                values["responsible"] = tuple(int(r) for r in values["responsible"])
            updated = replace(existing, updated_at=utc_now(), **values)
            self._devices[updated.id] = updated
            return updated

    def delete_device(self, device_id: int, *, timeout: Optional[float] = None) -> bool:
        with self._lock:
            return self._devices.pop(int(device_id), None) is not None


class InMemoryTagStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._ids = itertools.count(1)
        # Insertion ordered; ids are monotonic so this is also creation order.
        self._tags: Dict[int, Tag] = {}

    def list_tags(self, *, timeout: Optional[float] = None) -> List[Tag]:
        with self._lock:
            return list(self._tags.values())

    def get_tag(self, tag_id: int, *, timeout: Optional[float] = None) -> Optional[Tag]:
        with self._lock:
            return self._tags.get(int(tag_id))

    def create_tag(self, tag: Tag, *, timeout: Optional[float] = None) -> Tag:
        with self._lock:
            now = utc_now()
            created = replace(tag, id=next(self._ids), created_at=now, updated_at=now)
            self._tags[created.id] = created
            return created

    def update_tag(self, tag_id: int, changes: Dict[str, Any], *, timeout: Optional[float] = None) -> Optional[Tag]:
        _check_fields(changes, _TAG_FIELDS)
        with self._lock:
            existing = self._tags.get(int(tag_id))
            if existing is None:
                return None
            updated = replace(existing, updated_at=utc_now(), **changes)
            self._tags[updated.id] = updated
            return updated

    def delete_tag(self, tag_id: int, *, timeout: Optional[float] = None) -> bool:
        with self._lock:
            return self._tags.pop(int(tag_id), None) is not None


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._messages: List[Message] = []

    def insert_message(self, message: Message, *, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._messages.append(replace(message))

    def list_messages(
        self,
        *,
        device_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        timeout: Optional[float] = None,
    ) -> List[Message]:
        with self._lock:
            items = [
                m
                for m in self._messages
                if (device_id is None or m.device_id == device_id)
                and (start is None or m.got_at >= start)
                and (end is None or m.got_at <= end)
            ]
        items.sort(key=lambda m: m.got_at, reverse=True)
        return [replace(m) for m in items[: max(0, int(limit))]]

    def count_by_message_type(
        self, message_type: str, *, timeout: Optional[float] = None
    ) -> List[Tuple[int, int]]:
        with self._lock:
            counts = Counter(m.device_id for m in self._messages if m.message_type == message_type)
        return sorted(counts.items())

    def daily_stats(self, *, since: datetime, timeout: Optional[float] = None) -> List[DailyMessageStats]:
        buckets: Dict[Tuple[int, str, date], List[Message]] = defaultdict(list)
        with self._lock:
            for m in self._messages:
                if m.got_at >= since:
                    day = m.got_at.astimezone(timezone.utc).date()
                    buckets[(m.device_id, m.message_type, day)].append(m)

        out: List[DailyMessageStats] = []
        for (device_id, message_type, day), items in sorted(buckets.items()):
            critical = [m.got_at for m in items if m.severity_level == CRITICAL]
            out.append(
                DailyMessageStats(
                    device_id=device_id,
                    message_type=message_type,
                    day=day,
                    total=len(items),
                    critical=len(critical),
                    components=dict(Counter(m.component for m in items if m.component)),
                    first_critical_at=min(critical) if critical else None,
                    last_critical_at=max(critical) if critical else None,
                )
            )
        return out


class InMemoryStores:
    """Memory-backed device, tag and message stores."""

    def __init__(self) -> None:
        self.devices = InMemoryDeviceStore()
        self.tags = InMemoryTagStore()
        self.messages = InMemoryMessageStore()

    def connect(self) -> None:
        logger.info("In-memory stores ready")

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None
