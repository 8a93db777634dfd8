from __future__ import annotations

from src.api.db.memory import InMemoryStores
from src.api.models import Message
from src.api.services.classifier import MessageClassifier


def _msg(body: str, device_id: int = 1) -> Message:
    return Message(device_id=device_id, message=body, message_type="log", severity_level="info", component="General")


def test_high_temperature_trips_and_creates_recovery(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()

    outcome = classifier.classify(_msg("temp=95"))

    assert outcome.notify is True
    assert outcome.subject == "HIGH_TEMP"
    assert outcome.text == "temp=95"
    assert outcome.message.severity_level == "critical"
    assert outcome.hysteresis == "recovery_created"

    recovery = [t for t in stores.tags.list_tags() if t.subject == "OK"]
    assert len(recovery) == 1
    assert recovery[0].compare_type == "<"
    assert recovery[0].value == "80"
    assert recovery[0].severity_level == "info"


def test_device_without_rules_does_not_notify(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()

    outcome = classifier.classify(_msg("temp=95", device_id=2))

    assert outcome.notify is False
    assert outcome.subject == ""
    assert outcome.message.severity_level == "info"
    assert len(stores.tags.list_tags()) == 1


def test_recovery_wins_then_is_deleted(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()
    classifier.classify(_msg("temp=95"))

    outcome = classifier.classify(_msg("temp=70"))

    assert outcome.notify is True
    assert outcome.subject == "OK"
    assert outcome.message.severity_level == "info"
    assert outcome.hysteresis == "recovery_deleted"
    assert [t.subject for t in stores.tags.list_tags()] == ["HIGH_TEMP"]
    assert [t.tag.subject for t in classifier.rules.lookup(1)[0]] == ["HIGH_TEMP"]


def test_first_match_in_load_order_wins(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag(compare_type="=", value="link down", regexp="link down", array_index=0, subject="FIRST"))
    stores.tags.create_tag(make_tag(compare_type="=", value="down", regexp=r"link (\w+)", subject="SECOND"))
    classifier.refresh_rules()

    outcome = classifier.classify(_msg("eth0 link down"))

    assert outcome.subject == "FIRST"
    assert outcome.hysteresis is None


def test_pattern_match_with_failing_comparison_falls_through(
    stores: InMemoryStores, classifier: MessageClassifier, make_tag
):
    stores.tags.create_tag(make_tag(value="100", subject="VERY_HIGH"))
    stores.tags.create_tag(make_tag(compare_type="=", value="95", subject="EXACT", severity_level="warning"))
    classifier.refresh_rules()

    outcome = classifier.classify(_msg("temp=95"))

    assert outcome.subject == "EXACT"
    assert outcome.message.severity_level == "warning"
    # '=' tags never touch the tag store.
    assert outcome.hysteresis is None
    assert len(stores.tags.list_tags()) == 2


def test_no_match_leaves_message_unchanged(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag())
    classifier.refresh_rules()
    message = _msg("fan=3000rpm")

    outcome = classifier.classify(message)

    assert outcome.notify is False
    assert outcome.message is message


def test_empty_tag_severity_keeps_message_severity(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag(compare_type="=", value="95", severity_level=""))
    classifier.refresh_rules()

    outcome = classifier.classify(_msg("temp=95"))

    assert outcome.notify is True
    assert outcome.message.severity_level == "info"


def test_broken_tags_are_never_winners(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    stores.tags.create_tag(make_tag(regexp="temp=(\\d+", subject="BROKEN"))
    stores.tags.create_tag(make_tag(compare_type="~", subject="BAD_OP"))
    stores.tags.create_tag(make_tag(compare_type="=", value="95", subject="GOOD"))
    classifier.refresh_rules()

    assert classifier.classify(_msg("temp=95")).subject == "GOOD"


def test_rules_apply_only_after_refresh(stores: InMemoryStores, classifier: MessageClassifier, make_tag):
    classifier.refresh_rules()
    stores.tags.create_tag(make_tag())

    assert classifier.classify(_msg("temp=95")).notify is False

    classifier.refresh_rules()
    assert classifier.classify(_msg("temp=95")).notify is True


def test_resolves_devices_by_address(stores: InMemoryStores, classifier: MessageClassifier, make_device):
    device = stores.devices.create_device(make_device(address="192.168.1.20"))
    classifier.refresh_devices()

    assert classifier.resolve_device_id("192.168.1.20") == device.id
    assert classifier.resolve_device_id("192.168.1.21") is None
    assert classifier.describe_device(-1).name == "unknown device"
