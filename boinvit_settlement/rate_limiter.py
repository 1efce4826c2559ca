"""
Rate limiting for the webhook endpoint

Fixed-window counters keyed by source address. The in-memory backend serves a
single instance; the Redis backend shares counters across instances.
"""

import logging
import os
import time
from threading import Lock
from typing import Callable, Optional

import redis
from fastapi import Request

from .config import RATE_LIMIT_BACKEND, WEBHOOK_RATE_LIMIT, WEBHOOK_RATE_WINDOW_SECONDS

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None

MEMORY_CACHE_CLEANUP_INTERVAL = 60  # Clean up expired entries every 60 seconds


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both a REDIS_URL and individual host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection...")

        redis_url = os.getenv("REDIS_URL")

        if redis_url:
            # Mask password in URL for logging
            if "@" in redis_url:
                url_parts = redis_url.split("@")
                protocol = url_parts[0].split(":")[0]
                masked_url = f"{protocol}:****@{url_parts[1]}"
            else:
                masked_url = "****"
            logger.info(f"📡 Using Redis URL connection: {masked_url}")

            try:
                client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=20,
                )
                client.ping()
                logger.info("Redis connected successfully via URL")
            except Exception as e:
                logger.error(f"❌ Failed to connect to Redis via URL: {str(e)}")
                raise
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            redis_password = os.getenv("REDIS_PASSWORD", None)
            redis_db = int(os.getenv("REDIS_DB", "0"))
            redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"

            logger.info(f"📡 Using Redis at {redis_host}:{redis_port} (db={redis_db}, ssl={redis_ssl})")

            try:
                client = redis.Redis(
                    host=redis_host,
                    port=redis_port,
                    password=redis_password,
                    db=redis_db,
                    ssl=redis_ssl,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=20,
                )
                client.ping()
                logger.info(f"Redis connected successfully at {redis_host}:{redis_port}")
            except Exception as e:
                logger.error(f"❌ Failed to connect to Redis: {str(e)}")
                raise

        redis_client = client

    return redis_client


class RateLimiter:
    """allow(key) -> bool; implementations decide where the counters live"""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def allow(self, key: str) -> bool:
        raise NotImplementedError

    def current_count(self, key: str) -> int:
        raise NotImplementedError


class InMemoryRateLimiter(RateLimiter):
    """
    Per-key fixed window held in process memory.

    The counter map is the only shared mutable state of the webhook path, so
    every read-modify-write happens under one lock.
    """

    def __init__(
        self,
        max_requests: int = WEBHOOK_RATE_LIMIT,
        window_seconds: float = WEBHOOK_RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(max_requests, window_seconds)
        self._clock = clock
        # Format: {key: {"count": int, "reset_time": float}}
        self._entries: dict[str, dict] = {}
        self._lock = Lock()
        self._last_cleanup = clock()

    def _cleanup_expired(self, now: float) -> None:
        if now - self._last_cleanup < MEMORY_CACHE_CLEANUP_INTERVAL:
            return
        expired_keys = [k for k, v in self._entries.items() if now > v["reset_time"]]
        for k in expired_keys:
            del self._entries[k]
        if expired_keys:
            logger.debug(f"🧹 Cleaned up {len(expired_keys)} expired rate limit entries")
        self._last_cleanup = now

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)

            entry = self._entries.get(key)
            if entry is None or now > entry["reset_time"]:
                self._entries[key] = {"count": 1, "reset_time": now + self.window_seconds}
                return True

            if entry["count"] >= self.max_requests:
                return False

            entry["count"] += 1
            return True

    def current_count(self, key: str) -> int:
        with self._lock:
            entry = self._entries.get(key)
            return entry["count"] if entry else 0


class RedisRateLimiter(RateLimiter):
    """Counters in Redis (INCR + EXPIRE) so every instance sees the same window"""

    def __init__(
        self,
        client: redis.Redis,
        max_requests: int = WEBHOOK_RATE_LIMIT,
        window_seconds: int = WEBHOOK_RATE_WINDOW_SECONDS,
        key_prefix: str = "rate_limit:webhook",
    ):
        super().__init__(max_requests, window_seconds)
        self.client = client
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def allow(self, key: str) -> bool:
        redis_key = self._key(key)
        try:
            count = int(self.client.incr(redis_key))
            if count == 1:
                # First hit opens the window
                self.client.expire(redis_key, int(self.window_seconds))
            return count <= self.max_requests
        except Exception as e:
            logger.error(f"❌ Rate limit check failed: {str(e)}")
            # Fail closed for security - deny request if rate limiting fails
            logger.warning("🔒 Denying request due to rate limiting error (fail-closed mode)")
            return False

    def current_count(self, key: str) -> int:
        try:
            value = self.client.get(self._key(key))
            return int(value) if value else 0
        except Exception as e:
            logger.warning(f"⚠️ Failed to read rate limit counter: {e}")
            return 0


def build_webhook_rate_limiter(backend: str = RATE_LIMIT_BACKEND) -> RateLimiter:
    """Create the limiter the webhook route uses, falling back to memory if Redis is down"""
    if backend == "redis":
        try:
            return RedisRateLimiter(get_redis_client())
        except Exception as e:
            logger.warning(f"⚠️ Redis rate limiter unavailable, using in-memory counters: {e}")
    return InMemoryRateLimiter()


def get_webhook_rate_limiter(request: Request) -> RateLimiter:
    """FastAPI dependency: the limiter is attached to the application at startup"""
    limiter = getattr(request.app.state, "webhook_rate_limiter", None)
    if limiter is None:
        limiter = build_webhook_rate_limiter()
        request.app.state.webhook_rate_limiter = limiter
    return limiter
