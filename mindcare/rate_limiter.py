"""
Request throttling for write endpoints (submit, book, withdraw).

Counters are kept per process and mirrored to Redis every few seconds when
REDIS_URL is configured, so several workers converge on a shared count
without a Redis round trip on every request.
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request

from .config import RATE_LIMIT_ENABLED, REDIS_URL

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

# key -> {"count": int, "resets_at": int, "synced_at": int}
counters: dict[str, dict] = {}
counters_lock = Lock()

REDIS_MIRROR_SECONDS = 10
PRUNE_EVERY_SECONDS = 60
_last_prune = 0


def get_redis_client() -> Optional[redis.Redis]:
    """Shared Redis client, or None when REDIS_URL is not configured"""
    global redis_client

    if redis_client is None and REDIS_URL:
        logger.info("🔄 Connecting to Redis...")
        redis_client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )
        redis_client.ping()
        logger.info("✅ Redis connected")

    return redis_client


def _prune(now: int) -> None:
    global _last_prune
    if now - _last_prune < PRUNE_EVERY_SECONDS:
        return

    with counters_lock:
        stale = [key for key, counter in counters.items() if counter["resets_at"] <= now]
        for key in stale:
            del counters[key]
    if stale:
        logger.debug(f"🧹 Dropped {len(stale)} expired rate limit counters")
    _last_prune = now


def _load_counter(key: str, window_seconds: int, now: int, client: Optional[redis.Redis]) -> dict:
    """Start a counter, seeded from Redis when another worker already counted"""
    counter = {"count": 0, "resets_at": now + window_seconds, "synced_at": 0}
    if client is None:
        return counter
    try:
        stored = client.get(key)
        remaining = client.ttl(key)
    except redis.RedisError as e:
        logger.warning(f"⚠️ Redis read failed for {key}, counting locally: {e}")
        return counter
    if stored and remaining > 0:
        counter = {"count": int(stored), "resets_at": now + remaining, "synced_at": now}
    return counter


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: Optional[redis.Redis]
) -> tuple[bool, int, int]:
    """Count one request against ``key``.

    Returns:
        (allowed, count in the current window, seconds until the window resets)
    """
    now = int(time.time())
    _prune(now)

    with counters_lock:
        counter = counters.get(key)
        if counter is None:
            counter = counters[key] = _load_counter(key, window_seconds, now, client)
        elif now >= counter["resets_at"]:
            counter.update(count=0, resets_at=now + window_seconds, synced_at=0)

        allowed = counter["count"] < limit
        if allowed:
            counter["count"] += 1

        if client is not None and now - counter["synced_at"] >= REDIS_MIRROR_SECONDS:
            try:
                client.set(key, counter["count"], ex=max(1, counter["resets_at"] - now))
                counter["synced_at"] = now
            except redis.RedisError as e:
                logger.warning(f"⚠️ Redis write failed for {key}: {e}")

        return allowed, counter["count"], max(0, counter["resets_at"] - now)


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Build a FastAPI dependency that allows ``limit`` requests per client IP
    every ``window_seconds``.

    Example:
        booking_limit = create_rate_limiter(limit=30, window_seconds=3600, key_prefix="booking")

        @router.post("/appointments")
        def book(data: BookingRequest, _: None = Depends(booking_limit)):
            ...
    """

    async def rate_limiter(request: Request):
        if not RATE_LIMIT_ENABLED:
            return

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            caller = forwarded.split(",")[0].strip()
        else:
            caller = request.client.host if request.client else "unknown"
        key = f"{key_prefix}:{caller}"

        try:
            client = get_redis_client()
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis unavailable, rate limiting in memory: {e}")
            client = None

        allowed, count, retry_after = check_rate_limit(key, limit, window_seconds, client)
        if not allowed:
            logger.warning(f"🚫 Rate limit hit for {key} ({count}/{limit})")
            raise HTTPException(
                status_code=429,
                detail={
                    "message": f"Too many requests. Limit is {limit} per {window_seconds} seconds.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

    return rate_limiter
