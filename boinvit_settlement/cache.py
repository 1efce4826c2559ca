"""
Redis caching utilities for runtime configuration
Keeps the CORS allow-list lookup off the database on every request
"""
import json
import logging
import time
from typing import Any, Callable, Optional

from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

# Seconds to wait before trying Redis again after a failed connection
RECONNECT_BACKOFF_SECONDS = 30

ALLOWED_ORIGINS_KEY = "app_config:allowed_origins"


class Cache:
    """JSON values in Redis; every failure degrades to a miss"""

    def __init__(self):
        self.redis_client = None
        self._retry_after = 0.0

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            if time.monotonic() < self._retry_after:
                return None
            try:
                self.redis_client = get_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                self._retry_after = time.monotonic() + RECONNECT_BACKOFF_SECONDS
                return None
        return self.redis_client

    def _call(self, action: str, key: str, operation: Callable[[Any], Any], fallback: Any) -> Any:
        client = self._get_client()
        if not client:
            return fallback
        try:
            return operation(client)
        except Exception as e:
            logger.error(f"❌ Cache {action} failed for {key}: {e}")
            return fallback

    def get(self, key: str) -> Optional[Any]:
        def read(client):
            raw = client.get(key)
            return json.loads(raw) if raw else None

        value = self._call("read", key, read, None)
        logger.debug(f"{'❌ Cache MISS' if value is None else '✅ Cache HIT'}: {key}")
        return value

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        payload = json.dumps(value)
        return self._call("write", key, lambda client: bool(client.setex(key, ttl, payload)), False)

    def delete(self, key: str) -> bool:
        def drop(client):
            client.delete(key)
            return True

        return self._call("invalidate", key, drop, False)


# Global cache instance
cache = Cache()


def get_allowed_origins_cached() -> Optional[list]:
    """Get the CORS allow-list from cache"""
    return cache.get(ALLOWED_ORIGINS_KEY)


def set_allowed_origins_cached(origins: list, ttl: int = 300) -> bool:
    """Set the CORS allow-list in cache (5 minute TTL)"""
    return cache.set(ALLOWED_ORIGINS_KEY, origins, ttl)


def invalidate_allowed_origins_cache() -> bool:
    """Invalidate the CORS allow-list when the config row changes"""
    return cache.delete(ALLOWED_ORIGINS_KEY)
