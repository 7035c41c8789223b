"""
Tests for the per-user engine registry.
"""

import pytest

from factories import make_event
from notification_service.features.notifications.services.registry import EngineRegistry
from notification_service.services.read_state_store import InMemoryReadStateStore


@pytest.fixture
def registry(priority_table):
    stores = {}

    def factory(user_id):
        stores[user_id] = InMemoryReadStateStore()
        return stores[user_id]

    reg = EngineRegistry(factory, priority_table)
    reg.stores = stores
    return reg


@pytest.mark.asyncio
async def test_one_engine_per_user(registry):
    first = await registry.get_or_create("user-1")
    again = await registry.get_or_create("user-1")
    other = await registry.get_or_create("user-2")

    assert first is again
    assert first is not other
    assert len(registry) == 2
    assert first.store is registry.stores["user-1"]


@pytest.mark.asyncio
async def test_engines_are_isolated(registry):
    first = await registry.get_or_create("user-1")
    second = await registry.get_or_create("user-2")

    first.on_event(make_event("Submitted", 1))

    assert len(first) == 1
    assert len(second) == 0


@pytest.mark.asyncio
async def test_release_closes_the_engine(registry):
    engine = await registry.get_or_create("user-1")

    assert await registry.release("user-1") is True
    assert engine.closed is True
    assert registry.get("user-1") is None
    assert await registry.release("user-1") is False


@pytest.mark.asyncio
async def test_close_all(registry):
    engines = [await registry.get_or_create(f"user-{i}") for i in range(3)]

    await registry.close_all()

    assert len(registry) == 0
    assert all(e.closed for e in engines)


@pytest.mark.asyncio
async def test_user_id_is_required(registry):
    with pytest.raises(ValueError):
        await registry.get_or_create("")
