from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from src.api.db.stores import DeviceStore, TagStore
from src.api.models import ClassificationOutcome, Device, Message
from src.api.services.device_directory import DeviceDirectory, DeviceSnapshot
from src.api.services.hysteresis import HysteresisManager
from src.api.services.rule_cache import RuleCache, RuleSnapshot
from src.api.services.rule_compiler import CompiledTag

logger = logging.getLogger(__name__)


class MessageClassifier:
    """
    Classifies inbound device messages against the device's tags.

    The classifier owns the rule cache, the device directory and the hysteresis manager
    for one set of stores. Callers persist the message, dispatch notifications when the
    outcome asks for it, and call ``refresh_rules``/``refresh_devices`` after every change
    they make to the tag or device stores.
    """

    def __init__(
        self,
        rules: RuleCache,
        devices: DeviceDirectory,
        hysteresis: Optional[HysteresisManager] = None,
    ):
        self.rules = rules
        self.devices = devices
        self.hysteresis = hysteresis

    @classmethod
    def from_stores(
        cls, tag_store: TagStore, device_store: DeviceStore, *, timeout: Optional[float] = None
    ) -> "MessageClassifier":
        rules = RuleCache(tag_store, timeout=timeout)
        devices = DeviceDirectory(device_store, timeout=timeout)
        return cls(rules, devices, HysteresisManager(tag_store, rules, timeout=timeout))

    # PUBLIC_INTERFACE
    def refresh_rules(self) -> RuleSnapshot:
        """Reload tags from the store. Store errors propagate; the old snapshot stays."""
        return self.rules.refresh()

    # PUBLIC_INTERFACE
    def refresh_devices(self) -> DeviceSnapshot:
        """Reload devices from the store. Store errors propagate; the old snapshot stays."""
        return self.devices.refresh()

    # PUBLIC_INTERFACE
    def resolve_device_id(self, address: str) -> Optional[int]:
        """Map a device network address to its id, or None when the address is unknown."""
        device = self.devices.lookup_address(address)
        return device.id if device else None

    # PUBLIC_INTERFACE
    def describe_device(self, device_id: int) -> Device:
        return self.devices.describe(device_id)

    # PUBLIC_INTERFACE
    def classify(self, message: Message) -> ClassificationOutcome:
        """
        Evaluate ``message`` against its device's tags in load order.

        The first tag whose pattern matches and whose comparison holds wins: the outcome
        asks for a notification with the tag's subject and the raw body as text, and the
        returned message carries the tag's severity. When the winner is a threshold tag
        the hysteresis manager runs before this returns. With no winner the message is
        returned unchanged and ``notify`` is False.
        """
        tags, _ = self.rules.lookup(message.device_id)

        for compiled in tags:
            if not self._evaluate(compiled, message):
                continue

            classified = message
            if compiled.tag.severity_level:
                classified = replace(message, severity_level=compiled.tag.severity_level)

            action = None
            if self.hysteresis is not None and compiled.is_threshold:
                action = self.hysteresis.handle(compiled)

            logger.debug(
                "Message for device %s matched tag id=%s subject=%r",
                message.device_id,
                compiled.tag.id,
                compiled.tag.subject,
            )
            return ClassificationOutcome(
                message=classified,
                notify=True,
                subject=compiled.tag.subject,
                text=message.message,
                tag_id=compiled.tag.id,
                hysteresis=action.value if action else None,
            )

        return ClassificationOutcome(message=message)

    @staticmethod
    def _evaluate(compiled: CompiledTag, message: Message) -> bool:
        try:
            return compiled.matches(message.message or "")
        except Exception:
            # A broken tag never fires; the remaining tags are still evaluated.
            logger.exception("Tag id=%s failed while evaluating a message", compiled.tag.id)
            return False
