"""
Short-lived Redis cache for provider directory listings.

Every operation degrades to a miss when Redis is not configured or fails, so
the directory is always answerable from the database.
"""

import json
import logging
from typing import Any, Optional

import redis

from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

DIRECTORY_KEY_PREFIX = "providers:directory"


class Cache:
    """JSON values in Redis with a TTL"""

    def __init__(self):
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> Optional[redis.Redis]:
        if self._client is None:
            try:
                self._client = get_redis_client()
            except redis.RedisError as e:
                logger.warning(f"⚠️ Directory cache disabled: {e}")
        return self._client

    def get(self, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.error(f"❌ Cache read {key}: {e}")
            return None
        logger.debug(f"cache {'hit' if raw else 'miss'}: {key}")
        return json.loads(raw) if raw else None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        if self.client is None:
            return False
        try:
            self.client.setex(key, ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.error(f"❌ Cache write {key}: {e}")
            return False
        return True

    def delete_pattern(self, pattern: str) -> int:
        """Drop every key matching a glob pattern; returns how many were removed"""
        if self.client is None:
            return 0
        try:
            stale = list(self.client.scan_iter(match=pattern))
            if stale:
                self.client.delete(*stale)
        except redis.RedisError as e:
            logger.error(f"❌ Cache purge {pattern}: {e}")
            return 0
        return len(stale)


cache = Cache()


def directory_cache_key(specialization: Optional[str], language: Optional[str]) -> str:
    return f"{DIRECTORY_KEY_PREFIX}:{(specialization or '*').lower()}:{(language or '*').lower()}"


def invalidate_directory() -> None:
    """Called whenever a provider is created, edited or removed"""
    removed = cache.delete_pattern(f"{DIRECTORY_KEY_PREFIX}:*")
    if removed:
        logger.info(f"🧹 Invalidated {removed} directory listings")
