from __future__ import annotations

import threading
from typing import List

from src.api.db.memory import InMemoryStores, InMemoryTagStore
from src.api.db.stores import StoreUnavailableError
from src.api.models import Message
from src.api.services.classifier import MessageClassifier
from src.api.services.hysteresis import HysteresisAction, HysteresisManager, recovery_for
from src.api.services.rule_cache import RuleCache


def _msg(body: str, device_id: int = 1) -> Message:
    return Message(device_id=device_id, message=body, message_type="log", severity_level="info", component="General")


def _conditions(store) -> List[tuple]:
    return sorted(
        (t.device_id, t.regexp, t.compare_type, t.value, t.array_index, t.subject, t.severity_level)
        for t in store.list_tags()
    )


class FlakyTagStore(InMemoryTagStore):
    """Memory tag store whose create/delete can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def create_tag(self, tag, *, timeout=None):
        if self.fail_writes:
            raise StoreUnavailableError("create_tag failed: timed out")
        return super().create_tag(tag, timeout=timeout)

    def delete_tag(self, tag_id, *, timeout=None):
        if self.fail_writes:
            raise StoreUnavailableError("delete_tag failed: timed out")
        return super().delete_tag(tag_id, timeout=timeout)


def test_recovery_tag_shape(make_tag):
    tag = make_tag(id=9, compare_type="<", value="10", subject="LOW_FUEL", severity_level="error")
    recovery = recovery_for(tag)

    assert recovery.id is None
    assert recovery.compare_type == ">"
    assert recovery.subject == "OK"
    assert recovery.severity_level == "info"
    assert (recovery.regexp, recovery.value, recovery.array_index, recovery.device_id) == (
        tag.regexp,
        tag.value,
        tag.array_index,
        tag.device_id,
    )


def test_two_cycles_return_to_the_same_rule_set(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()
    initial = _conditions(stores.tags)

    for _ in range(2):
        assert classifier.classify(_msg("temp=95")).hysteresis == "recovery_created"
        assert len(stores.tags.list_tags()) == 2
        assert classifier.classify(_msg("temp=70")).hysteresis == "recovery_deleted"
        assert _conditions(stores.tags) == initial


def test_repeated_trip_keeps_a_single_recovery(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()

    classifier.classify(_msg("temp=95"))
    # The alerting tag is still first in load order, so it wins again.
    outcome = classifier.classify(_msg("temp=99"))

    assert outcome.subject == "HIGH_TEMP"
    assert outcome.hysteresis == "recovery_exists"
    assert len([t for t in stores.tags.list_tags() if t.subject == "OK"]) == 1


def test_equality_tags_never_mutate_the_store(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag(compare_type="=", value="95"))
    classifier.refresh_rules()

    for _ in range(3):
        outcome = classifier.classify(_msg("temp=95"))
        assert outcome.notify is True
        assert outcome.hysteresis is None

    assert len(stores.tags.list_tags()) == 1


def test_clearing_a_recovery_that_is_already_gone(stores: InMemoryStores, make_tag):
    rules = RuleCache(stores.tags)
    manager = HysteresisManager(stores.tags, rules)
    stores.tags.create_tag(make_tag())
    rules.refresh()

    assert manager.handle(rules.lookup(1)[0][0]) is HysteresisAction.created
    recovery = next(t for t in rules.lookup(1)[0] if t.tag.is_recovery)

    assert manager.handle(recovery) is HysteresisAction.deleted
    # Same (now stale) winner handled again, e.g. by a request that raced the first one.
    assert manager.handle(recovery) is HysteresisAction.already_cleared
    assert [t.subject for t in stores.tags.list_tags()] == ["HIGH_TEMP"]


def test_store_failure_is_reported_but_message_still_notifies(make_tag):
    store = FlakyTagStore()
    store.create_tag(make_tag())
    classifier = MessageClassifier.from_stores(store, InMemoryStores().devices)
    classifier.refresh_rules()
    store.fail_writes = True

    outcome = classifier.classify(_msg("temp=95"))

    assert outcome.notify is True
    assert outcome.subject == "HIGH_TEMP"
    assert outcome.hysteresis == "failed"
    assert len(store.list_tags()) == 1

    # Once the store recovers the next trip arms the pair.
    store.fail_writes = False
    assert classifier.classify(_msg("temp=95")).hysteresis == "recovery_created"


def test_concurrent_trips_create_one_recovery(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()

    start = threading.Barrier(8)
    results: List[str] = []
    results_lock = threading.Lock()

    def worker():
        start.wait(5)
        outcome = classifier.classify(_msg("temp=95"))
        with results_lock:
            results.append(outcome.hysteresis)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert results.count("recovery_created") == 1
    assert results.count("recovery_exists") == 7
    assert len([t for t in stores.tags.list_tags() if t.subject == "OK"]) == 1


def test_low_threshold_cycle(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(
        make_tag(name="fuel", regexp=r"fuel=(\d+)", compare_type="<", value="10", subject="LOW_FUEL", severity_level="error")
    )
    classifier.refresh_rules()
    initial = _conditions(stores.tags)

    tripped = classifier.classify(_msg("fuel=5"))
    assert tripped.subject == "LOW_FUEL"
    assert tripped.message.severity_level == "error"
    assert tripped.hysteresis == "recovery_created"
    recovery = [t for t in stores.tags.list_tags() if t.is_recovery]
    assert [(t.compare_type, t.value, t.regexp) for t in recovery] == [(">", "10", r"fuel=(\d+)")]

    # Still low: the alerting tag wins again and nothing new is created.
    assert classifier.classify(_msg("fuel=7")).hysteresis == "recovery_exists"

    cleared = classifier.classify(_msg("fuel=50"))
    assert cleared.subject == "OK"
    assert cleared.message.severity_level == "info"
    assert cleared.hysteresis == "recovery_deleted"
    assert _conditions(stores.tags) == initial

    assert classifier.classify(_msg("fuel=50")).notify is False
