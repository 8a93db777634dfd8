from __future__ import annotations

import logging
from typing import List, Protocol

from src.api.models import ClassificationOutcome, Device

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, device: Device, outcome: ClassificationOutcome) -> None: ...


class LoggingNotifier:
    """Writes alerts to the log; delivery channels plug in behind the same ``send``."""

    def send(self, device: Device, outcome: ClassificationOutcome) -> None:
        logger.warning(
            "ALERT device=%s (%s) subject=%r severity=%s responsible=%s text=%r",
            device.id,
            device.name,
            outcome.subject,
            outcome.message.severity_level,
            list(device.responsible),
            outcome.text,
        )


class RecordingNotifier:
    """Keeps every alert in memory; handy for local runs and tests."""

    def __init__(self) -> None:
        self.alerts: List[tuple] = []

    def send(self, device: Device, outcome: ClassificationOutcome) -> None:
        self.alerts.append((device, outcome))
