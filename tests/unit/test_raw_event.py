from datetime import UTC, datetime

import pytest

from notification_service.features.notifications.domain.errors import MalformedEventError
from notification_service.features.notifications.domain.models import RawEvent


def _record(**overrides):
    data = {
        "entity_type": "match_request",
        "entity_id": 42,
        "state": "Submitted",
        "occurred_at": "2026-01-01T12:00:00Z",
        "actor": "org-a",
        "payload": {"title": "Match request", "company": "Acme"},
        "refs": {"color": 7},
    }
    data.update(overrides)
    return data


def test_from_mapping_normalizes_fields():
    event = RawEvent.from_mapping(_record())

    assert event.entity_id == "42"
    assert event.occurred_at == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert event.refs == {"color": "7"}
    assert event.payload["company"] == "Acme"


@pytest.mark.parametrize("field", ["entity_type", "entity_id", "state"])
def test_missing_required_field_is_malformed(field):
    with pytest.raises(MalformedEventError) as exc:
        RawEvent.from_mapping(_record(**{field: None}))

    assert exc.value.field == field


def test_blank_state_is_malformed():
    with pytest.raises(MalformedEventError):
        RawEvent.from_mapping(_record(state="   "))


def test_missing_or_bad_timestamp_is_malformed():
    with pytest.raises(MalformedEventError):
        RawEvent.from_mapping(_record(occurred_at=None))
    with pytest.raises(MalformedEventError):
        RawEvent.from_mapping(_record(occurred_at="yesterday"))


def test_epoch_and_naive_timestamps_become_utc():
    from_epoch = RawEvent.from_mapping(_record(occurred_at=0))
    naive = RawEvent.from_mapping(_record(occurred_at="2026-01-01T12:00:00"))

    assert from_epoch.occurred_at == datetime(1970, 1, 1, tzinfo=UTC)
    assert naive.occurred_at.tzinfo is not None


def test_non_mapping_is_malformed():
    with pytest.raises(MalformedEventError):
        RawEvent.from_mapping(["match_request", 1])


def test_event_is_immutable():
    event = RawEvent.from_mapping(_record())

    with pytest.raises(AttributeError):
        event.state = "Approved"
    with pytest.raises(TypeError):
        event.payload["title"] = "changed"


def test_event_without_payload_or_refs():
    event = RawEvent(
        entity_type="job",
        entity_id="7",
        state="New",
        occurred_at=datetime(2026, 1, 1, tzinfo=UTC),
    )

    assert event.payload == {}
    assert event.refs == {}
    assert event.actor is None
    with pytest.raises(TypeError):
        event.refs["color"] = "c1"
