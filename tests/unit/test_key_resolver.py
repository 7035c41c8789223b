from factories import make_event
from notification_service.features.notifications.domain.models import NotificationKey
from notification_service.features.notifications.pipeline.key_resolver import KeyResolver, resolve_key


def test_default_key_is_entity_type_and_id():
    key = resolve_key(make_event(entity_type="color", entity_id="c-9"))

    assert key == NotificationKey("color", "c-9")
    assert str(key) == "color:c-9"


def test_unknown_entity_type_falls_back_to_default_key():
    key = resolve_key(make_event(entity_type="invoice", entity_id="77", refs={"color": "red"}))

    assert key == NotificationKey("invoice", "77")


def test_match_request_scopes_by_color_before_measurement():
    by_color = resolve_key(make_event(refs={"color": "c1", "measurement": "m1"}))
    by_measurement = resolve_key(make_event(refs={"measurement": "m1"}))
    unscoped = resolve_key(make_event())

    assert by_color == NotificationKey("match_request", "1", ("color", "c1"))
    assert by_measurement == NotificationKey("match_request", "1", ("measurement", "m1"))
    assert unscoped == NotificationKey("match_request", "1")
    assert len({by_color, by_measurement, unscoped}) == 3


def test_routed_job_scopes_by_receiving_org():
    a = resolve_key(make_event("Routed", entity_type="routed_job", entity_id="j1", refs={"receiver_org": "o1"}))
    b = resolve_key(make_event("Routed", entity_type="routed_job", entity_id="j1", refs={"receiver_org": "o2"}))

    assert a != b
    assert str(a) == "routed_job:j1:receiver_org:o1"


def test_blank_ref_is_ignored():
    key = resolve_key(make_event(refs={"color": "  "}))

    assert key == NotificationKey("match_request", "1")


def test_failing_composer_falls_back_to_default_key():
    def broken(event):
        raise KeyError("boom")

    resolver = KeyResolver({"match_request": broken})

    assert resolver.resolve(make_event()) == NotificationKey("match_request", "1")


def test_unpaired_scope_falls_back_to_default_key():
    resolver = KeyResolver({"match_request": lambda event: ("color",)})

    assert resolver.resolve(make_event()) == NotificationKey("match_request", "1")


def test_resolution_is_deterministic_across_resolvers():
    event = make_event(refs={"color": "c1"})

    assert KeyResolver().resolve(event) == KeyResolver().resolve(event)


def test_key_round_trips_through_string_with_separator_in_id():
    key = NotificationKey("match_request", "a:b/c", ("color", "x y"))

    assert NotificationKey.parse(str(key)) == key


def test_parse_rejects_malformed_keys():
    for text in ["", "onlytype", "a:b:c", ":1"]:
        try:
            NotificationKey.parse(text)
        except ValueError:
            continue
        raise AssertionError(f"parse accepted {text!r}")
