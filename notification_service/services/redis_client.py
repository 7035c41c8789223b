# notification_service/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from notification_service.config import settings
from notification_service.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

class FastRedisClient:
    """Pooled async Redis client used by the read-state store."""

    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            pool_config = settings.get_redis_config()
            logger.info("Attempting Redis connection", host=settings.redis_host(), **pool_config)

            self.pool = ConnectionPool.from_url(
                self.url,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                health_check_interval=30,
                decode_responses=True,  # Auto-decode strings
                **pool_config,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            # Test connection
            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info(
                "Fast Redis client initialized successfully",
                max_connections=pool_config["max_connections"],
            )

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    # The data operations below raise on failure; callers decide how to retry.

    async def get(self, key: str) -> str | None:
        await self._ensure_initialized()
        return await self.client.get(key)

    async def set_many(self, values: dict[str, str], ttl_s: int | None = None) -> bool:
        """Set several keys in one transaction, optionally with a shared TTL."""
        if not values:
            return True
        await self._ensure_initialized()
        async with self.client.pipeline(transaction=True) as pipe:
            for key, value in values.items():
                if ttl_s:
                    pipe.setex(key, ttl_s, value)
                else:
                    pipe.set(key, value)
            results = await pipe.execute()
        return all(bool(result) for result in results)


# Global instance
fast_redis = FastRedisClient()
