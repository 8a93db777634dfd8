"""Domain records shared by the stores, the rule engine and the HTTP layer.

These are plain dataclasses rather than pydantic models: they travel through the
rule engine on every inbound message and are never validated from user input
directly (the routers do that with the schemas in ``src.api.schemas``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Mapping, Optional, Tuple

from src.api.schemas.common import Severity, utc_now

# Subject reserved for recovery tags created by the hysteresis manager.
RECOVERY_SUBJECT = "OK"
RECOVERY_SEVERITY = Severity.info.value

UNKNOWN_DEVICE_ID = -1


@dataclass(frozen=True)
class Device:
    """A monitored device as stored in the device store."""

    id: int
    name: str
    device_type: str
    address: str
    responsible: Tuple[int, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


UNKNOWN_DEVICE = Device(
    id=UNKNOWN_DEVICE_ID,
    name="unknown device",
    device_type="unknown device",
    address="unknown device",
)


@dataclass(frozen=True)
class Tag:
    """A raw tag (rule) record; ``id`` is None until the store assigns one."""

    device_id: int
    name: str
    regexp: str
    compare_type: str
    value: str
    array_index: int
    subject: str
    severity_level: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_recovery(self) -> bool:
        return self.subject == RECOVERY_SUBJECT


@dataclass
class Message:
    """An inbound device message. Only ``severity_level`` changes after creation."""

    device_id: int
    message: str
    message_type: str
    severity_level: str
    component: str
    got_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ClassificationOutcome:
    """Result of evaluating one message against its device's tags."""

    message: Message
    notify: bool = False
    subject: str = ""
    text: str = ""
    tag_id: Optional[int] = None
    hysteresis: Optional[str] = None


@dataclass(frozen=True)
class DailyMessageStats:
    """Message volume for one device and message type on one UTC day."""

    device_id: int
    message_type: str
    day: date
    total: int
    critical: int
    # Messages per component on that day.
    components: Mapping[str, int] = field(default_factory=dict)
    first_critical_at: Optional[datetime] = None
    last_critical_at: Optional[datetime] = None
