"""
Read-state storage for notifications.

Durable key -> boolean mapping of which notification keys a user has read.
The engine only talks to the ReadStateStore interface; RedisReadStateStore
is the production backing, InMemoryReadStateStore serves tests and local runs.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Iterable
from functools import wraps

import redis.asyncio as redis

from notification_service.config import settings
from notification_service.features.notifications.domain.errors import ReadStateStoreError
from notification_service.features.notifications.domain.models import NotificationKey
from notification_service.infrastructure.observability.logging import get_logger
from notification_service.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

_READ = "1"
_UNREAD = "0"


def with_redis_retry(max_retries: int | None = None, base_delay: float | None = None):
    """
    Decorator to retry Redis operations on temporary failures.

    Args:
        max_retries: Maximum number of retry attempts (default from settings)
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            retries = settings.READ_STATE_MAX_RETRIES if max_retries is None else max_retries
            delay_base = settings.READ_STATE_RETRY_BASE_DELAY if base_delay is None else base_delay

            for attempt in range(retries + 1):
                try:
                    return await func(*args, **kwargs)

                except (redis.ConnectionError, redis.TimeoutError, ConnectionError, RuntimeError) as e:
                    # Temporary failures - retry
                    if attempt < retries:
                        delay = delay_base * (2**attempt) + random.uniform(0, delay_base)
                        logger.warning(
                            "Read-state operation failed, retrying",
                            operation=func.__name__,
                            attempt=attempt + 1,
                            max_retries=retries,
                            delay=round(delay, 3),
                            error=str(e),
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            "Read-state operation failed after all retries",
                            operation=func.__name__,
                            attempts=retries + 1,
                            error=str(e),
                        )
                        raise ReadStateStoreError(
                            f"Operation failed after {retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                except redis.RedisError as e:
                    # Permanent failures - don't retry
                    logger.error(
                        "Read-state operation failed with permanent error",
                        operation=func.__name__,
                        error=str(e),
                    )
                    raise ReadStateStoreError(
                        f"Read-state operation failed: {e}",
                        operation=func.__name__,
                        recoverable=False,
                    ) from e

        return wrapper

    return decorator


class ReadStateStore(ABC):
    """Per-user durable read flags. Both operations may suspend."""

    @abstractmethod
    async def get(self, key: NotificationKey) -> bool | None:
        """Stored read flag, or None when nothing is stored or the lookup failed."""

    @abstractmethod
    async def set_many(self, keys: Iterable[NotificationKey], value: bool) -> bool:
        """Persist one flag for several keys in one batch; False on failure."""


class RedisReadStateStore(ReadStateStore):
    """Read flags stored as '<prefix>:<user_id>:<notification key>' -> '1' | '0'."""

    def __init__(
        self,
        user_id: str,
        client: FastRedisClient | None = None,
        prefix: str | None = None,
        ttl_s: int | None = None,
    ):
        if not user_id:
            raise ValueError("RedisReadStateStore requires a user_id")
        self.user_id = user_id
        self.client = client or fast_redis
        self.prefix = prefix or settings.READ_STATE_KEY_PREFIX
        self.ttl_s = settings.READ_STATE_TTL_SECONDS if ttl_s is None else ttl_s

    def _redis_key(self, key: NotificationKey) -> str:
        return f"{self.prefix}:{self.user_id}:{key}"

    @with_redis_retry()
    async def _get(self, key: NotificationKey) -> str | None:
        return await self.client.get(self._redis_key(key))

    @with_redis_retry()
    async def _set_many(self, values: dict[str, str]) -> bool:
        return await self.client.set_many(values, self.ttl_s)

    async def get(self, key: NotificationKey) -> bool | None:
        try:
            value = await self._get(key)
        except ReadStateStoreError as e:
            logger.error("Read-state lookup failed", user_id=self.user_id, key=str(key), error=str(e))
            return None
        if value is None:
            return None
        if value not in (_READ, _UNREAD):
            logger.warning("Invalid read-state value in Redis", key=str(key), value=value)
            return None
        return value == _READ

    async def set_many(self, keys: Iterable[NotificationKey], value: bool) -> bool:
        values = {self._redis_key(key): _READ if value else _UNREAD for key in keys}
        if not values:
            return True
        try:
            return await self._set_many(values)
        except ReadStateStoreError as e:
            logger.error(
                "Read-state persist failed",
                user_id=self.user_id,
                keys=len(values),
                value=value,
                error=str(e),
            )
            return False


class InMemoryReadStateStore(ReadStateStore):
    """Process-local store; nothing survives a restart."""

    def __init__(self, initial: dict[NotificationKey, bool] | None = None):
        self.flags: dict[NotificationKey, bool] = dict(initial or {})
        self.writes: list[tuple[tuple[NotificationKey, ...], bool]] = []

    async def get(self, key: NotificationKey) -> bool | None:
        return self.flags.get(key)

    async def set_many(self, keys: Iterable[NotificationKey], value: bool) -> bool:
        batch = tuple(keys)
        for key in batch:
            self.flags[key] = value
        self.writes.append((batch, value))
        return True
