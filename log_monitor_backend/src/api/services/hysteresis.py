from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from threading import Lock
from typing import Optional

from src.api.db.stores import TagStore
from src.api.models import RECOVERY_SEVERITY, RECOVERY_SUBJECT, Tag
from src.api.schemas.common import CompareType
from src.api.services.rule_cache import RuleCache
from src.api.services.rule_compiler import CompiledTag

logger = logging.getLogger(__name__)


class HysteresisAction(str, Enum):
    """What the manager did in response to a threshold tag winning."""

    created = "recovery_created"
    deleted = "recovery_deleted"
    already_armed = "recovery_exists"
    already_cleared = "recovery_gone"
    failed = "failed"


def recovery_for(tag: Tag) -> Tag:
    """Build the recovery tag for an alerting threshold tag: same match, opposite operator."""
    return replace(
        tag,
        id=None,
        created_at=None,
        updated_at=None,
        subject=RECOVERY_SUBJECT,
        severity_level=RECOVERY_SEVERITY,
        compare_type=CompareType(tag.compare_type).flipped().value,
    )


def _same_condition(a: Tag, b: Tag) -> bool:
    return (
        a.device_id == b.device_id
        and a.regexp == b.regexp
        and a.compare_type == b.compare_type
        and a.value == b.value
        and a.array_index == b.array_index
        and a.subject == b.subject
    )


class HysteresisManager:
    """
    Keeps a recovery ("OK") tag paired with every tripped threshold tag.

    Per device and pattern the tags move between two states:

    - armed: only the alerting tag exists. When it wins, a recovery tag with the flipped
      operator is created.
    - tripped: the recovery tag exists too. When the recovery tag wins it is deleted and
      the pair is armed again.

    Store failures are logged and reported as ``HysteresisAction.failed``; they never
    propagate to the classifier. Transitions are serialized by a lock of their own, so
    readers of the rule cache are never blocked by them.
    """

    def __init__(self, store: TagStore, rules: RuleCache, *, timeout: Optional[float] = None):
        self._store = store
        self._rules = rules
        self._timeout = timeout
        self._lock = Lock()

    # PUBLIC_INTERFACE
    def handle(self, winner: CompiledTag) -> Optional[HysteresisAction]:
        """React to a winning tag. Returns None for tags that are not threshold tags."""
        if not winner.is_threshold:
            return None
        with self._lock:
            if winner.tag.is_recovery:
                return self._clear(winner.tag)
            return self._trip(winner.tag)

    def _active(self, tag_id: Optional[int], device_id: int) -> bool:
        tags, _ = self._rules.lookup(device_id)
        return any(t.tag.id == tag_id for t in tags)

    def _clear(self, tag: Tag) -> HysteresisAction:
        # Another caller may have cleared it while we were waiting on the lock.
        if not self._active(tag.id, tag.device_id):
            logger.info("Recovery tag id=%s already removed for device %s", tag.id, tag.device_id)
            return HysteresisAction.already_cleared

        try:
            deleted = self._store.delete_tag(tag.id, timeout=self._timeout)
        except Exception:
            logger.exception("Failed deleting recovery tag id=%s device=%s", tag.id, tag.device_id)
            return HysteresisAction.failed

        if not deleted:
            logger.warning("Recovery tag id=%s was not in the store (device %s)", tag.id, tag.device_id)

        self._refresh()
        logger.info("Threshold cleared: removed recovery tag id=%s device=%s", tag.id, tag.device_id)
        return HysteresisAction.deleted if deleted else HysteresisAction.already_cleared

    def _trip(self, tag: Tag) -> HysteresisAction:
        recovery = recovery_for(tag)

        tags, _ = self._rules.lookup(tag.device_id)
        existing = next((t.tag for t in tags if _same_condition(t.tag, recovery)), None)
        if existing is not None:
            logger.debug("Recovery tag id=%s already armed for tag id=%s", existing.id, tag.id)
            return HysteresisAction.already_armed

        try:
            created = self._store.create_tag(recovery, timeout=self._timeout)
        except Exception:
            logger.exception("Failed creating recovery tag for tag id=%s device=%s", tag.id, tag.device_id)
            return HysteresisAction.failed

        self._refresh()
        logger.info(
            "Threshold tripped: tag id=%s created recovery tag id=%s (%s %s) device=%s",
            tag.id,
            created.id,
            created.compare_type,
            created.value,
            tag.device_id,
        )
        return HysteresisAction.created

    def _refresh(self) -> None:
        try:
            self._rules.refresh()
        except Exception:
            logger.exception("Rule cache refresh after hysteresis transition failed")
