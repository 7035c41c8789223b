"""
End-to-end tests for the notification routes with an in-memory read-state store.
"""

import pytest
from fastapi.testclient import TestClient

from factories import at
from notification_service.main import app
from notification_service.services.read_state_store import InMemoryReadStateStore

USER = {"X-User-Id": "user-1"}


def _event(state, t, entity_id="1", **extra):
    return {
        "entity_type": "match_request",
        "entity_id": entity_id,
        "state": state,
        "occurred_at": at(t).isoformat(),
        "actor": "org-b",
        "payload": {"title": f"Request {entity_id}"},
        **extra,
    }


@pytest.fixture
def stores():
    return {}


@pytest.fixture
def client(stores):
    def factory(user_id):
        return stores.setdefault(user_id, InMemoryReadStateStore())

    app.state.store_factory = factory
    with TestClient(app) as test_client:
        yield test_client
    del app.state.store_factory


def test_user_header_is_required(client):
    response = client.get("/notifications")

    assert response.status_code == 422


def test_stale_replay_collapses_into_one_notification(client):
    response = client.post(
        "/notifications/events",
        json={"events": [_event("Submitted", 1), _event("Approved", 2), _event("Submitted", 0.5)]},
        headers=USER,
    )

    assert response.status_code == 200
    body = response.json()
    assert [r["outcome"] for r in body["results"]] == ["created", "advanced", "stale"]
    assert body["unread_count"] == 1

    feed = client.get("/notifications", headers=USER).json()
    assert feed["total"] == 1
    item = feed["items"][0]
    assert item["key"] == "match_request:1"
    assert item["latest_state"] == "Approved"
    assert item["revision_count"] == 3
    assert item["read"] is False


def test_malformed_event_is_reported_without_rejecting_the_batch(client):
    response = client.post(
        "/notifications/events",
        json={"events": [{"entity_type": "match_request", "state": "Submitted"}, _event("Submitted", 1)]},
        headers=USER,
    )

    body = response.json()
    assert body["malformed"] == 1
    assert body["applied"] == 1
    assert body["results"][0]["outcome"] == "malformed"

    diagnostics = client.get("/notifications/diagnostics", headers=USER).json()
    assert diagnostics["malformed_events"] == 1


def test_mark_read_and_resurface(client, stores):
    client.post("/notifications/events", json={"events": [_event("Submitted", 1)]}, headers=USER)

    response = client.post("/notifications/read", json={"key": "match_request:1"}, headers=USER)
    assert response.json() == {"key": "match_request:1", "found": True, "unread_count": 0}

    body = client.post("/notifications/events", json={"events": [_event("Approved", 2)]}, headers=USER).json()
    assert body["results"][0]["resurfaced"] is True
    assert body["unread_count"] == 1


def test_mark_read_unknown_key(client):
    response = client.post("/notifications/read", json={"key": "job:404"}, headers=USER)

    assert response.status_code == 200
    assert response.json()["found"] is False


def test_mark_read_malformed_key(client):
    response = client.post("/notifications/read", json={"key": "onlytype"}, headers=USER)

    assert response.status_code == 400


def test_mark_all_read(client):
    client.post(
        "/notifications/events",
        json={"events": [_event("Submitted", 1, entity_id=str(i)) for i in range(3)]},
        headers=USER,
    )

    body = client.post("/notifications/read-all", headers=USER).json()

    assert body == {"marked": 3, "unread_count": 0}
    assert client.get("/notifications/unread-count", headers=USER).json() == {"unread_count": 0}


def test_feed_filters_and_pagination(client):
    client.post(
        "/notifications/events",
        json={
            "events": [
                _event("Submitted", 1, entity_id="1"),
                _event("Approved", 2, entity_id="2"),
                {
                    "entity_type": "color",
                    "entity_id": "c1",
                    "state": "Shared",
                    "occurred_at": at(3).isoformat(),
                },
            ]
        },
        headers=USER,
    )

    page = client.get("/notifications", params={"limit": 2}, headers=USER).json()
    assert page["total"] == 3
    assert page["has_more"] is True
    assert [i["entity_id"] for i in page["items"]] == ["c1", "2"]

    colors = client.get("/notifications", params={"entity_type": "color"}, headers=USER).json()
    assert [i["entity_id"] for i in colors["items"]] == ["c1"]

    by_priority = client.get("/notifications", params={"sort": "priority"}, headers=USER).json()
    assert by_priority["items"][0]["latest_state"] == "Approved"

    grouped = client.get("/notifications/grouped", headers=USER).json()
    assert set(grouped["groups"]) == {"match_request", "color"}


def test_sessions_are_isolated_per_user(client):
    client.post("/notifications/events", json={"events": [_event("Submitted", 1)]}, headers=USER)

    other = client.get("/notifications", headers={"X-User-Id": "user-2"}).json()

    assert other["total"] == 0


def test_read_state_survives_a_new_session(client, stores):
    client.post("/notifications/events", json={"events": [_event("Submitted", 1)]}, headers=USER)
    client.post("/notifications/read", json={"key": "match_request:1"}, headers=USER)

    assert client.delete("/notifications/session", headers=USER).json() == {"released": True}

    # Replaying the backlog into a fresh session picks the flag up from the store
    client.post("/notifications/events", json={"events": [_event("Submitted", 1)]}, headers=USER)
    client.get("/notifications/diagnostics", headers=USER)

    feed = client.get("/notifications", headers=USER).json()
    assert feed["items"][0]["read"] is True
    assert feed["unread_count"] == 0


def test_mark_read_with_separators_in_entity_id(client):
    body = client.post(
        "/notifications/events",
        json={"events": [_event("Submitted", 1, entity_id="req:42/a%b")]},
        headers=USER,
    ).json()
    key = body["results"][0]["key"]

    response = client.post("/notifications/read", json={"key": key}, headers=USER)

    assert response.status_code == 200
    assert response.json()["found"] is True
    assert response.json()["unread_count"] == 0
    item = client.get("/notifications", headers=USER).json()["items"][0]
    assert item["entity_id"] == "req:42/a%b"
    assert item["read"] is True


def test_change_authored_by_the_session_user_resurfaces(client):
    client.post("/notifications/events", json={"events": [_event("Submitted", 1)]}, headers=USER)
    client.post("/notifications/read", json={"key": "match_request:1"}, headers=USER)

    client.post(
        "/notifications/events",
        json={"events": [_event("Approved", 2, actor="user-1")]},
        headers=USER,
    )

    assert client.get("/notifications/unread-count", headers=USER).json() == {"unread_count": 1}
