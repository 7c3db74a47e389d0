"""
Presence Mirror - Online/Offline State in Redis

The Presence Registry is the source of truth for routing, but it lives in one
relay process. This service mirrors it into Redis so the user/friend lookup
API can answer ``isOnline`` / ``lastSeen`` without talking to the relay:

1. User announces online → set_user_online() writes ``online:<id>`` with a TTL
2. Client sends heartbeat every 30s → heartbeat() refreshes the TTL
3. If heartbeats stop (crash, lost network) → the key expires after 60s
4. Guarded presence removal → set_user_offline() deletes the key

Every call swallows Redis errors after logging them: a mirror outage must
never break signaling.
"""
import logging
from datetime import datetime, UTC
from typing import List, Optional

from redis.exceptions import RedisError

from signlink.config.constants import (
    PRESENCE_LAST_SEEN_KEY_PREFIX,
    PRESENCE_LAST_SEEN_TTL_SEC,
    PRESENCE_MIRROR_TTL_SEC,
    PRESENCE_ONLINE_KEY_PREFIX,
)
from signlink.config.redis import get_redis
from signlink.config.settings import settings

logger = logging.getLogger(__name__)


class StatusService:
    """Mirror of presence transitions into Redis."""

    HEARTBEAT_TTL = PRESENCE_MIRROR_TTL_SEC

    def __init__(self, enabled: Optional[bool] = None):
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        if self._enabled is None:
            return settings.PRESENCE_MIRROR_ENABLED
        return self._enabled

    @staticmethod
    def _online_key(user_id: str) -> str:
        return f"{PRESENCE_ONLINE_KEY_PREFIX}{user_id}"

    @staticmethod
    def _last_seen_key(user_id: str) -> str:
        return f"{PRESENCE_LAST_SEEN_KEY_PREFIX}{user_id}"

    async def set_user_online(self, user_id: str) -> None:
        """Called after the registry accepted an announce."""
        if not self.enabled:
            return
        try:
            redis = await get_redis()
            await redis.set(self._online_key(user_id), "1", ex=self.HEARTBEAT_TTL)
            await redis.set(
                self._last_seen_key(user_id),
                datetime.now(UTC).isoformat(),
                ex=PRESENCE_LAST_SEEN_TTL_SEC
            )
            logger.debug(f"User {user_id} mirrored online")
        except (RedisError, OSError) as e:
            logger.error(f"Presence mirror error (online {user_id}): {e}")

    async def set_user_offline(self, user_id: str) -> None:
        """Called after a guarded removal actually evicted the user."""
        if not self.enabled:
            return
        try:
            redis = await get_redis()
            await redis.delete(self._online_key(user_id))
            await redis.set(
                self._last_seen_key(user_id),
                datetime.now(UTC).isoformat(),
                ex=PRESENCE_LAST_SEEN_TTL_SEC
            )
            logger.debug(f"User {user_id} mirrored offline")
        except (RedisError, OSError) as e:
            logger.error(f"Presence mirror error (offline {user_id}): {e}")

    async def heartbeat(self, user_id: str) -> None:
        """Refresh the online key TTL and last-seen timestamp."""
        if not self.enabled:
            return
        try:
            redis = await get_redis()
            await redis.set(self._online_key(user_id), "1", ex=self.HEARTBEAT_TTL)
            await redis.set(
                self._last_seen_key(user_id),
                datetime.now(UTC).isoformat(),
                ex=PRESENCE_LAST_SEEN_TTL_SEC
            )
        except (RedisError, OSError) as e:
            logger.error(f"Presence mirror error (heartbeat {user_id}): {e}")

    async def is_user_online(self, user_id: str) -> bool:
        if not self.enabled:
            return False
        try:
            redis = await get_redis()
            return bool(await redis.exists(self._online_key(user_id)))
        except (RedisError, OSError) as e:
            logger.error(f"Presence mirror error (exists {user_id}): {e}")
            return False

    async def get_last_seen(self, user_id: str) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            redis = await get_redis()
            return await redis.get(self._last_seen_key(user_id))
        except (RedisError, OSError) as e:
            logger.error(f"Presence mirror error (last_seen {user_id}): {e}")
            return None

    async def get_online_users(self) -> List[str]:
        """Get list of all user IDs the mirror believes are online."""
        if not self.enabled:
            return []
        try:
            redis = await get_redis()
            keys = [key async for key in redis.scan_iter(match=f"{PRESENCE_ONLINE_KEY_PREFIX}*")]
            return [key[len(PRESENCE_ONLINE_KEY_PREFIX):] for key in keys]
        except (RedisError, OSError) as e:
            logger.error(f"Presence mirror error (scan): {e}")
            return []


# Singleton instance
status_service = StatusService()
