"""
Shared async Redis client for the presence mirror.
"""
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from signlink.config.settings import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def build_redis_url() -> str:
    auth = f":{settings.REDIS_PASSWORD}@" if settings.REDIS_PASSWORD else ""
    return f"redis://{auth}{settings.REDIS_HOST}:{settings.REDIS_PORT}"


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.Redis.from_url(build_redis_url(), decode_responses=True)
    return _client


async def ping_redis() -> bool:
    """Check that the mirror backend answers; used once at startup."""
    try:
        client = await get_redis()
        return bool(await client.ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unreachable at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {e}")
        return False


async def close_redis():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
