"""Redis client setup and configuration."""

from __future__ import annotations

import json
import logging
from typing import Any
from typing import Dict
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from universe.shared.config import Settings

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> Redis:
    """Create Redis client with proper configuration."""
    pool = redis.ConnectionPool.from_url(
        settings.effective_redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        retry_on_timeout=True,
        socket_keepalive=True,
    )
    return Redis(connection_pool=pool)


class RedisManager:
    """Redis manager for handling connections and operations."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client: Optional[Redis] = None

    async def init(self) -> None:
        """Initialize Redis connection."""
        logger.info("Initializing Redis manager")
        self.client = create_redis_client(self.settings)

        try:
            await self.client.ping()
            logger.info("Redis connection successful")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def close(self) -> None:
        """Close Redis connections."""
        if self.client:
            logger.info("Closing Redis manager")
            await self.client.aclose()
            self.client = None

    def _require_client(self) -> Redis:
        if not self.client:
            raise RuntimeError("Redis manager not initialized")
        return self.client

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis."""
        return await self._require_client().get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """Set value in Redis."""
        return await self._require_client().set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        """Delete keys from Redis."""
        return await self._require_client().delete(*keys)

    # Hash operations
    async def hset(self, name: str, key: str, value: str) -> int:
        """Set hash field value."""
        return await self._require_client().hset(name, key, value)

    async def hgetall(self, name: str) -> Dict[str, str]:
        """Get all hash fields and values."""
        return await self._require_client().hgetall(name)

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete hash fields."""
        return await self._require_client().hdel(name, *keys)

    # Pub/Sub operations
    async def publish(self, channel: str, message: str) -> int:
        """Publish message to channel."""
        return await self._require_client().publish(channel, message)

    def pubsub(self) -> redis.client.PubSub:
        """Get pub/sub client."""
        return self._require_client().pubsub()


class CacheManager:
    """High-level cache manager with JSON serialization."""

    def __init__(self, redis_manager: RedisManager, prefix: str = "cache"):
        self.redis_manager = redis_manager
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        """Create prefixed cache key."""
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache with JSON deserialization."""
        value = await self.redis_manager.get(self._make_key(key))

        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Failed to deserialize cached value for key: {key}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with JSON serialization."""
        try:
            serialized_value = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize value for key {key}: {e}")
            return False

        return await self.redis_manager.set(self._make_key(key), serialized_value, ex=ttl)

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        return await self.redis_manager.delete(self._make_key(key)) > 0
