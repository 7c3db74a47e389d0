"""
Presence Registry

Maps each online user to exactly one live connection (last connect wins)
and fans presence changes out to every attached connection.

All mutations happen before the first ``await`` of each method, so the map
is never observed half-updated by interleaved handlers on the event loop.
"""
from typing import Dict, List, Optional, Protocol
import logging

from signlink.config.constants import PRESENCE_ONLINE, PRESENCE_OFFLINE
from signlink.schemas import PresenceChangedEvent, PresenceSnapshotEvent
from signlink.services import metrics

logger = logging.getLogger(__name__)


class ConnectionHandle(Protocol):
    handle_id: str
    user_id: Optional[str]

    async def send_json(self, data: dict) -> bool:
        ...


class PresenceRegistry:
    """
    In-memory presence map.

    Provides:
    - attach/detach of every accepted connection (the broadcast audience)
    - set_online/lookup/remove of the user -> connection mapping
    """

    def __init__(self):
        # handle_id -> connection, for every accepted connection
        self._connections: Dict[str, ConnectionHandle] = {}
        # user_id -> connection currently representing that user
        self._online: Dict[str, ConnectionHandle] = {}

    # === Connection Lifecycle ===

    def attach(self, conn: ConnectionHandle) -> None:
        self._connections[conn.handle_id] = conn
        metrics.attached_connections.set(len(self._connections))

    async def detach(self, conn: ConnectionHandle) -> bool:
        """Forget a closed connection and drop its presence entry if it still owns it."""
        self._connections.pop(conn.handle_id, None)
        metrics.attached_connections.set(len(self._connections))
        if conn.user_id is None:
            return False
        return await self.remove(conn.user_id, conn)

    # === Presence Operations ===

    async def set_online(
        self,
        user_id: str,
        conn: ConnectionHandle,
        username: Optional[str] = None,
        user_type: Optional[str] = None
    ) -> None:
        """Register (or overwrite) the user's connection, then notify everyone."""
        previous = self._online.get(user_id)
        self._online[user_id] = conn
        self._connections.setdefault(conn.handle_id, conn)
        snapshot = list(self._online.keys())
        audience = [c for c in self._connections.values() if c is not conn]
        metrics.online_users.set(len(self._online))

        if previous is not None and previous is not conn:
            logger.info(f"[Presence] User {user_id} reconnected, replacing {previous.handle_id[:8]}")
        else:
            logger.info(f"[Presence] User {user_id} is online")

        changed = PresenceChangedEvent(
            user_id=user_id,
            state=PRESENCE_ONLINE,
            username=username,
            user_type=user_type
        ).to_wire()
        for other in audience:
            await other.send_json(changed)

        await conn.send_json(PresenceSnapshotEvent(users=snapshot).to_wire())

    def lookup(self, user_id: str) -> Optional[ConnectionHandle]:
        return self._online.get(user_id)

    async def remove(self, user_id: str, conn: ConnectionHandle) -> bool:
        """
        Remove the user's entry only if ``conn`` is the connection on record.

        A late disconnect from a replaced connection must not evict the
        newer one, so the comparison is on the handle, not the user id.
        """
        current = self._online.get(user_id)
        if current is None or current is not conn:
            logger.debug(f"[Presence] Ignoring stale remove for {user_id} ({conn.handle_id[:8]})")
            return False

        del self._online[user_id]
        audience = [c for c in self._connections.values() if c is not conn]
        metrics.online_users.set(len(self._online))
        logger.info(f"[Presence] User {user_id} is offline")

        changed = PresenceChangedEvent(user_id=user_id, state=PRESENCE_OFFLINE).to_wire()
        for other in audience:
            await other.send_json(changed)
        return True

    # === Query Methods ===

    def online_user_ids(self) -> List[str]:
        return list(self._online.keys())

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    def get_online_count(self) -> int:
        return len(self._online)

    def get_total_connections(self) -> int:
        return len(self._connections)
