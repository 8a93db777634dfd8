from __future__ import annotations

import threading
from typing import List, Optional

import pytest

from src.api.db.memory import InMemoryStores
from src.api.db.stores import StoreUnavailableError
from src.api.models import UNKNOWN_DEVICE, Tag
from src.api.services.device_directory import DeviceDirectory
from src.api.services.rule_cache import RuleCache


class ScriptedTagStore:
    """Tag store whose list_tags answers come from a list of callables."""

    def __init__(self, answers):
        self._answers = list(answers)
        self.calls = 0

    def list_tags(self, *, timeout: Optional[float] = None) -> List[Tag]:
        answer = self._answers[min(self.calls, len(self._answers) - 1)]
        self.calls += 1
        return answer()


def test_rule_cache_groups_by_device_in_load_order(stores: InMemoryStores, make_tag):
    for device_id, subject in [(1, "a"), (2, "b"), (1, "c"), (1, "d")]:
        stores.tags.create_tag(make_tag(device_id=device_id, subject=subject))

    cache = RuleCache(stores.tags)
    snapshot = cache.refresh()

    tags, found = cache.lookup(1)
    assert found
    assert [t.tag.subject for t in tags] == ["a", "c", "d"]
    assert [t.tag.subject for t in cache.lookup(2)[0]] == ["b"]
    assert snapshot.active_count == 4
    assert cache.generation == 1


def test_rule_cache_unknown_device_is_empty_not_error(stores: InMemoryStores):
    cache = RuleCache(stores.tags)
    cache.refresh()
    assert cache.lookup(42) == ((), False)


def test_rule_cache_excludes_broken_tags(stores: InMemoryStores, make_tag):
    stores.tags.create_tag(make_tag(regexp="([bad"))
    good = stores.tags.create_tag(make_tag())
    cache = RuleCache(stores.tags)
    snapshot = cache.refresh()
    assert [t.tag.id for t in cache.lookup(1)[0]] == [good.id]
    assert snapshot.source_count == 2
    assert snapshot.active_count == 1


def test_failed_refresh_keeps_previous_snapshot(make_tag):
    def boom():
        raise StoreUnavailableError("list_tags failed: timed out")

    store = ScriptedTagStore([lambda: [make_tag(id=1)], boom])
    cache = RuleCache(store)
    first = cache.refresh()

    with pytest.raises(StoreUnavailableError):
        cache.refresh()

    assert cache.snapshot() is first
    assert [t.tag.id for t in cache.lookup(1)[0]] == [1]
    assert cache.generation == 1


def test_stale_refresh_does_not_overwrite_newer_snapshot(make_tag):
    entered = threading.Event()
    release = threading.Event()

    def slow_old():
        entered.set()
        assert release.wait(5)
        return [make_tag(id=1, subject="old")]

    store = ScriptedTagStore([slow_old, lambda: [make_tag(id=2, subject="new")]])
    cache = RuleCache(store)

    worker = threading.Thread(target=cache.refresh)
    worker.start()
    assert entered.wait(5)

    cache.refresh()
    release.set()
    worker.join(5)

    assert [t.tag.subject for t in cache.lookup(1)[0]] == ["new"]
    assert cache.generation == 2


def test_readers_never_see_a_partial_rule_set(make_tag):
    """Alternate between two complete rule sets while readers check consistency."""

    def rule_set(label: str):
        return lambda: [
            make_tag(id=n, device_id=device_id, subject=label)
            for n, device_id in enumerate([1, 1, 1, 2, 2, 3], start=1)
        ]

    store = ScriptedTagStore([rule_set("x"), rule_set("y")] * 200)
    cache = RuleCache(store)
    cache.refresh()

    stop = threading.Event()
    problems: List[str] = []

    def reader():
        while not stop.is_set():
            snapshot = cache.snapshot()
            subjects = {c.tag.subject for tags in snapshot.by_device.values() for c in tags}
            sizes = {d: len(tags) for d, tags in snapshot.by_device.items()}
            if len(subjects) != 1 or sizes != {1: 3, 2: 2, 3: 1}:
                problems.append(f"subjects={subjects} sizes={sizes}")

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    for _ in range(300):
        cache.refresh()
    stop.set()
    for t in readers:
        t.join(5)

    assert problems == []


def test_device_directory_indexes_by_id_and_address(stores: InMemoryStores, make_device):
    a = stores.devices.create_device(make_device(address="10.0.0.1"))
    b = stores.devices.create_device(make_device(name="edge", address="10.0.0.2"))

    directory = DeviceDirectory(stores.devices)
    directory.refresh()

    assert directory.lookup(a.id) == (a, True)
    assert directory.lookup(999) == (None, False)
    assert directory.lookup_address("10.0.0.2") == b
    assert directory.lookup_address("10.9.9.9") is None
    assert directory.describe(999) == UNKNOWN_DEVICE
    assert sorted(directory.addresses()) == ["10.0.0.1", "10.0.0.2"]


def test_device_directory_refresh_replaces_wholesale(stores: InMemoryStores, make_device):
    a = stores.devices.create_device(make_device(address="10.0.0.1"))
    directory = DeviceDirectory(stores.devices)
    directory.refresh()

    stores.devices.update_device(a.id, {"address": "10.0.0.9"})
    # Not visible until the next refresh.
    assert directory.lookup_address("10.0.0.1") is not None

    directory.refresh()
    assert directory.lookup_address("10.0.0.1") is None
    assert directory.lookup_address("10.0.0.9").id == a.id
