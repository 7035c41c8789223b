import pytest

from factories import FailingReadStateStore, FakeRedisClient
from notification_service.features.notifications.pipeline.priority_table import PriorityTable
from notification_service.services.read_state_store import InMemoryReadStateStore


@pytest.fixture
def priority_table():
    return PriorityTable.from_mapping()


@pytest.fixture
def memory_store():
    return InMemoryReadStateStore()


@pytest.fixture
def failing_store():
    return FailingReadStateStore()


@pytest.fixture
def fake_redis_client():
    return FakeRedisClient()
