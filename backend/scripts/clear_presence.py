import asyncio
import sys
import os

# Add backend to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from signlink.config.constants import PRESENCE_ONLINE_KEY_PREFIX
from signlink.config.redis import get_redis, close_redis


async def clear_presence():
    """Drop stale online:* keys left by a relay that died without cleanup."""
    print("🧹 Clearing presence mirror...")
    redis = await get_redis()
    removed = 0
    async for key in redis.scan_iter(match=f"{PRESENCE_ONLINE_KEY_PREFIX}*"):
        await redis.delete(key)
        removed += 1
    print(f"✅ Removed {removed} online keys.")
    await close_redis()

if __name__ == "__main__":
    asyncio.run(clear_presence())
