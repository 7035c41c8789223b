"""
Tests for the Redis-backed read-state store and its retry decorator.
"""

from unittest.mock import patch

import pytest
import redis.asyncio as redis

from factories import FakeRedisClient
from notification_service.features.notifications.domain.errors import ReadStateStoreError
from notification_service.features.notifications.domain.models import NotificationKey
from notification_service.services.read_state_store import RedisReadStateStore, with_redis_retry

KEY = NotificationKey("match_request", "1", ("color", "c1"))


@pytest.fixture(autouse=True)
def no_retry_delay():
    with patch("notification_service.services.read_state_store.settings.READ_STATE_RETRY_BASE_DELAY", 0):
        yield


def _store(client):
    return RedisReadStateStore("user-1", client=client, prefix="test:read", ttl_s=60)


@pytest.mark.asyncio
async def test_set_many_writes_one_entry_per_key(fake_redis_client):
    other = NotificationKey("job", "9")
    store = _store(fake_redis_client)

    assert await store.set_many([KEY, other], True) is True

    assert fake_redis_client.store == {
        "test:read:user-1:match_request:1:color:c1": "1",
        "test:read:user-1:job:9": "1",
    }
    assert await store.get(KEY) is True


@pytest.mark.asyncio
async def test_unread_flag_round_trips(fake_redis_client):
    store = _store(fake_redis_client)

    await store.set_many([KEY], False)

    assert await store.get(KEY) is False


@pytest.mark.asyncio
async def test_missing_key_returns_none(fake_redis_client):
    assert await _store(fake_redis_client).get(KEY) is None


@pytest.mark.asyncio
async def test_invalid_stored_value_is_ignored(fake_redis_client):
    fake_redis_client.store["test:read:user-1:match_request:1:color:c1"] = "yes"

    assert await _store(fake_redis_client).get(KEY) is None


@pytest.mark.asyncio
async def test_empty_batch_is_a_no_op(fake_redis_client):
    assert await _store(fake_redis_client).set_many([], True) is True
    assert fake_redis_client.calls == 0


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    client = FakeRedisClient(failures=2)
    store = _store(client)

    assert await store.set_many([KEY], True) is True
    assert client.calls == 3


@pytest.mark.asyncio
async def test_exhausted_retries_report_failure():
    client = FakeRedisClient(failures=10)
    store = _store(client)

    with patch("notification_service.services.read_state_store.settings.READ_STATE_MAX_RETRIES", 2):
        assert await store.set_many([KEY], True) is False
        assert await store.get(KEY) is None

    assert client.calls == 6


@pytest.mark.asyncio
async def test_permanent_redis_error_is_not_retried():
    client = FakeRedisClient(failures=1, error=redis.ResponseError("WRONGTYPE"))

    assert await _store(client).set_many([KEY], True) is False
    assert client.calls == 1


@pytest.mark.asyncio
async def test_retry_decorator_raises_store_error():
    attempts = []

    @with_redis_retry(max_retries=1, base_delay=0)
    async def flaky():
        attempts.append(1)
        raise redis.TimeoutError("slow")

    with pytest.raises(ReadStateStoreError) as exc:
        await flaky()

    assert exc.value.operation == "flaky"
    assert len(attempts) == 2


def test_store_requires_user_id(fake_redis_client):
    with pytest.raises(ValueError):
        RedisReadStateStore("", client=fake_redis_client)
