from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from src.api.db.stores import TagStore
from src.api.schemas.common import utc_now
from src.api.services.rule_compiler import CompiledTag, compile_tags
from src.api.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleSnapshot:
    """Compiled tags grouped by device id, each group in store load order."""

    by_device: Mapping[int, Tuple[CompiledTag, ...]] = field(default_factory=lambda: MappingProxyType({}))
    loaded_at: Optional[datetime] = None
    # Tags read from the store, including the ones that failed to compile.
    source_count: int = 0

    @property
    def active_count(self) -> int:
        return sum(len(v) for v in self.by_device.values())


def build_rule_snapshot(compiled: List[CompiledTag], source_count: int) -> RuleSnapshot:
    grouped: Dict[int, List[CompiledTag]] = {}
    for item in compiled:
        grouped.setdefault(item.tag.device_id, []).append(item)
    return RuleSnapshot(
        by_device=MappingProxyType({device_id: tuple(items) for device_id, items in grouped.items()}),
        loaded_at=utc_now(),
        source_count=source_count,
    )


class RuleCache(SnapshotCache[RuleSnapshot]):
    """Per-device compiled tags, rebuilt wholesale from the tag store."""

    def __init__(self, store: TagStore, *, timeout: Optional[float] = None):
        super().__init__(RuleSnapshot())
        self._store = store
        self._timeout = timeout

    # PUBLIC_INTERFACE
    def refresh(self) -> RuleSnapshot:
        """
        Reload every tag from the store, compile them and swap the result in.

        Store errors propagate and leave the previous snapshot in place. Tags that fail to
        compile are logged and left out of the new snapshot.
        """
        ticket = self._begin_refresh()
        started = time.perf_counter()

        tags = self._store.list_tags(timeout=self._timeout)
        compiled = compile_tags(tags)
        snapshot, published = self._publish(ticket, build_rule_snapshot(compiled, len(tags)))

        if published:
            logger.info(
                "Rule cache refreshed: %s/%s tags active across %s devices in %.1fms",
                snapshot.active_count,
                snapshot.source_count,
                len(snapshot.by_device),
                (time.perf_counter() - started) * 1000.0,
            )
        return snapshot

    # PUBLIC_INTERFACE
    def lookup(self, device_id: int) -> Tuple[Tuple[CompiledTag, ...], bool]:
        """Return (compiled tags, found) for a device from the current snapshot."""
        tags = self.snapshot().by_device.get(device_id)
        if tags is None:
            return (), False
        return tags, True
