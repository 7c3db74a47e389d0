"""
WebSocket Router - Realtime Signaling Endpoint

This is the thin routing layer that delegates to RelaySession
for all WebSocket session management.
"""
from typing import Optional

from fastapi import APIRouter, WebSocket, Query

from signlink.services.presence import presence_registry, status_service
from signlink.services.relay import RelaySession

router = APIRouter()


@router.websocket("/ws")
async def ws_endpoint(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None),
    token: Optional[str] = Query(None)
):
    """
    WebSocket endpoint for presence, signaling and chat relay.

    Query Parameters:
        user_id: Binds the connection's identity at connect time (optional;
                 otherwise the first announce_online binds it)
        token: Session token from the auth service (recorded, not verified)

    Message Types (JSON, ``type`` field):
        - announce_online: register presence, receive presence_snapshot
        - call_offer / call_answer / ice_candidate / call_end
        - call_request / call_accepted / call_rejected
        - chat_message / message_read / typing_start / typing_end
        - friend_request_sent / friend_request_accepted
        - heartbeat / ping
    """
    session = RelaySession(
        websocket=websocket,
        registry=presence_registry,
        status=status_service,
        user_id=user_id,
        token=token
    )
    await session.run()
