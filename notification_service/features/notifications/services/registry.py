"""
Per-user engine registry.

One NotificationEngine per user session: created when the consuming surface
first asks for it, released on logout/detach, and closed together on
application shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from notification_service.infrastructure.observability.logging import get_logger
from notification_service.services.read_state_store import ReadStateStore, RedisReadStateStore

from ..pipeline.priority_table import PriorityTable, build_priority_table
from .engine import NotificationEngine

logger = get_logger(__name__)

StoreFactory = Callable[[str], ReadStateStore]


class EngineRegistry:
    """Owns the engines of all active sessions."""

    def __init__(
        self,
        store_factory: StoreFactory | None = None,
        priority_table: PriorityTable | None = None,
    ):
        self.store_factory: StoreFactory = store_factory or RedisReadStateStore
        self._priority_table = priority_table
        self._engines: dict[str, NotificationEngine] = {}
        self._lock = asyncio.Lock()

    @property
    def priority_table(self) -> PriorityTable:
        # Built lazily so settings overrides patched in tests take effect
        if self._priority_table is None:
            self._priority_table = build_priority_table()
        return self._priority_table

    async def get_or_create(self, user_id: str) -> NotificationEngine:
        if not user_id:
            raise ValueError("user_id is required")
        async with self._lock:
            engine = self._engines.get(user_id)
            if engine is None:
                engine = NotificationEngine(
                    self.store_factory(user_id),
                    user_id=user_id,
                    priority_table=self.priority_table,
                )
                await engine.start()
                self._engines[user_id] = engine
                logger.info("Notification session created", user_id=user_id, sessions=len(self._engines))
            return engine

    def get(self, user_id: str) -> NotificationEngine | None:
        return self._engines.get(user_id)

    def engines(self) -> list[NotificationEngine]:
        return list(self._engines.values())

    async def release(self, user_id: str) -> bool:
        """Close and drop a user's engine; False if there was none."""
        async with self._lock:
            engine = self._engines.pop(user_id, None)
        if engine is None:
            return False
        await engine.close()
        logger.info("Notification session released", user_id=user_id, sessions=len(self._engines))
        return True

    async def close_all(self) -> None:
        async with self._lock:
            engines, self._engines = list(self._engines.values()), {}
        errors = []
        for engine in engines:
            try:
                await engine.close()
            except Exception as e:
                logger.error("Error closing notification engine", user_id=engine.user_id, error=str(e))
                errors.append(engine.user_id)
        logger.info("All notification sessions closed", closed=len(engines) - len(errors), errors=errors)

    def __len__(self) -> int:
        return len(self._engines)
