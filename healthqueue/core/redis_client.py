"""Redis client configuration and cache helpers."""

import json
from typing import Any, cast

import redis
import structlog

from healthqueue.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=2,
            socket_timeout=2,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class CacheManager:
    """Redis-backed JSON cache.

    The cache is an optimisation only: every failure is logged and reported
    as a miss so callers fall back to the database.
    """

    def __init__(self, redis_client: redis.Redis, namespace: str = "healthqueue"):
        """Initialize cache manager with Redis client."""
        self.redis = redis_client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get_json(self, key: str) -> Any | None:
        """
        Get JSON value from cache and deserialize.

        Args:
            key: Cache key (without namespace)

        Returns:
            Deserialized object or None
        """
        try:
            value = cast(str | None, self.redis.get(self._key(key)))
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None

    def set_json(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """
        Serialize and set JSON value in cache.

        Args:
            key: Cache key (without namespace)
            value: Value to serialize and cache
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            json_value = json.dumps(value, default=str)
            if ttl:
                self.redis.setex(self._key(key), ttl, json_value)
            else:
                self.redis.set(self._key(key), json_value)
            return True
        except Exception as e:
            logger.warning("cache_write_failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        """Delete key from cache."""
        try:
            self.redis.delete(self._key(key))
            return True
        except Exception as e:
            logger.warning("cache_delete_failed", key=key, error=str(e))
            return False
