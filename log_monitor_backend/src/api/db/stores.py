"""Store contracts consumed by the rule engine and the service layer.

Two implementations exist: ``src.api.db.mongo`` (pymongo) and ``src.api.db.memory``.
Every call accepts an optional ``timeout`` in seconds; ``None`` means no limit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from src.api.models import DailyMessageStats, Device, Message, Tag


class StoreError(Exception):
    """Base error raised by store implementations."""


class StoreUnavailableError(StoreError):
    """The backing store could not be reached or the call timed out."""


class DeviceExistsError(StoreError):
    """A device with the same address already exists."""


class DeviceStore(Protocol):
    def list_devices(self, *, timeout: Optional[float] = None) -> List[Device]: ...

    def get_device(self, device_id: int, *, timeout: Optional[float] = None) -> Optional[Device]: ...

    def create_device(self, device: Device, *, timeout: Optional[float] = None) -> Device: ...

    def update_device(
        self, device_id: int, changes: Dict[str, Any], *, timeout: Optional[float] = None
    ) -> Optional[Device]: ...

    def delete_device(self, device_id: int, *, timeout: Optional[float] = None) -> bool: ...


class TagStore(Protocol):
    def list_tags(self, *, timeout: Optional[float] = None) -> List[Tag]:
        """Return all tags in ascending creation order."""
        ...

    def get_tag(self, tag_id: int, *, timeout: Optional[float] = None) -> Optional[Tag]: ...

    def create_tag(self, tag: Tag, *, timeout: Optional[float] = None) -> Tag: ...

    def update_tag(self, tag_id: int, changes: Dict[str, Any], *, timeout: Optional[float] = None) -> Optional[Tag]: ...

    def delete_tag(self, tag_id: int, *, timeout: Optional[float] = None) -> bool:
        """Delete a tag; returns False when it did not exist."""
        ...


class MessageStore(Protocol):
    def insert_message(self, message: Message, *, timeout: Optional[float] = None) -> None: ...

    def list_messages(
        self,
        *,
        device_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        timeout: Optional[float] = None,
    ) -> List[Message]:
        """Return messages newest first."""
        ...

    def count_by_message_type(
        self, message_type: str, *, timeout: Optional[float] = None
    ) -> List[Tuple[int, int]]:
        """Return (device id, message count) pairs for one message type, ordered by device id."""
        ...

    def daily_stats(self, *, since: datetime, timeout: Optional[float] = None) -> List[DailyMessageStats]:
        """Per device, message type and UTC day volume for messages received at or after ``since``."""
        ...


class Stores(Protocol):
    """The trio of stores plus lifecycle hooks, as held by the app state."""

    devices: DeviceStore
    tags: TagStore
    messages: MessageStore

    def connect(self) -> None: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...
