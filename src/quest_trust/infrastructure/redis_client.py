"""Redis client for the optional server-status replay guard.

Redis is only connected when REPLAY_GUARD_ENABLED is set. Without it,
replay protection is the timestamp freshness window alone.

Usage:
    from quest_trust.infrastructure.redis_client import init_redis, RedisReplayGuard

    redis = await init_redis()
    guard = RedisReplayGuard(redis)
    fresh = await guard.check_and_remember(signature, ttl_seconds=600)
"""

from __future__ import annotations

import hashlib

import redis.asyncio as aioredis

from quest_trust.config import get_settings
from quest_trust.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected")
    return _redis_client


def get_redis() -> aioredis.Redis | None:
    """Return the Redis client singleton, or None when it was never initialized."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


class RedisReplayGuard:
    """Remembers accepted server-status response signatures.

    A signature is stored under a hashed key with SET NX EX, so the first
    caller wins atomically and the entry expires with the freshness window.
    """

    key_prefix = "quest_trust:replay:"

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    def _key(self, signature: str) -> str:
        return self.key_prefix + hashlib.sha256(signature.encode("utf-8")).hexdigest()

    async def check_and_remember(self, signature: str, ttl_seconds: int) -> bool:
        """Return True if the signature is new, False if it was already seen."""
        stored = await self._redis.set(self._key(signature), "1", nx=True, ex=ttl_seconds)
        return bool(stored)
