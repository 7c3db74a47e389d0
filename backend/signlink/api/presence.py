from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from signlink.services.presence import presence_registry, status_service

router = APIRouter(prefix="/presence", tags=["presence"])


class OnlineUsersResponse(BaseModel):
    users: List[str]


class UserPresenceResponse(BaseModel):
    user_id: str
    is_online: bool
    last_seen: Optional[str] = None


@router.get("", response_model=OnlineUsersResponse)
async def list_online_users():
    """Users with a live presence entry on this relay."""
    return OnlineUsersResponse(users=presence_registry.online_user_ids())


@router.get("/{user_id}", response_model=UserPresenceResponse)
async def get_user_presence(user_id: str):
    """
    Presence for one user, as consumed by the user/friend lookup API.

    ``is_online`` comes from the registry; ``last_seen`` from the Redis mirror
    when it is enabled.
    """
    last_seen = await status_service.get_last_seen(user_id)
    return UserPresenceResponse(
        user_id=user_id,
        is_online=presence_registry.is_online(user_id),
        last_seen=last_seen
    )
