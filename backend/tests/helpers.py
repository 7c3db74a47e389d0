from typing import Any, Dict, List, Optional

from signlink.services.presence import RelayConnection


class FakeWebSocket:
    """Stands in for a Starlette WebSocket; records everything sent."""

    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Dict[str, Any]):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == kind]

    def clear(self):
        self.sent.clear()


def make_connection(user_id: Optional[str] = None, fail: bool = False) -> RelayConnection:
    return RelayConnection(FakeWebSocket(fail=fail), user_id=user_id)


def sent(conn: RelayConnection, kind: Optional[str] = None) -> List[Dict[str, Any]]:
    if kind is None:
        return list(conn.websocket.sent)
    return conn.websocket.of_type(kind)
