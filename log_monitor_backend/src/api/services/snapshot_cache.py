from __future__ import annotations

import logging
from threading import Lock
from typing import Generic, Tuple, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")


class SnapshotCache(Generic[S]):
    """
    Holder for an immutable snapshot that is rebuilt off-lock and swapped in whole.

    Readers call ``snapshot()`` and get the current reference without locking. Writers
    call ``_begin_refresh()`` before reading their backing store and ``_publish()`` once
    the new snapshot is built; a build that started before the currently published one
    is dropped, so a slow read never overwrites a newer result.
    """

    def __init__(self, empty: S):
        self._lock = Lock()
        self._snapshot: S = empty
        self._issued = 0
        self._published = 0

    def snapshot(self) -> S:
        return self._snapshot

    @property
    def generation(self) -> int:
        """Ticket of the published snapshot; 0 until the first successful refresh."""
        return self._published

    def _begin_refresh(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def _publish(self, ticket: int, snapshot: S) -> Tuple[S, bool]:
        """Swap in ``snapshot`` unless a newer one is already published."""
        with self._lock:
            if ticket < self._published:
                logger.info(
                    "%s: discarding stale refresh ticket=%s (published=%s)",
                    type(self).__name__,
                    ticket,
                    self._published,
                )
                return self._snapshot, False
            self._snapshot = snapshot
            self._published = ticket
            return snapshot, True
