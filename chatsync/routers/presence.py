from fastapi import APIRouter, Depends

from chatsync.services.presence_service import PresenceTracker
from chatsync.utils.dependencies import get_current_user, get_presence_tracker


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("")
async def online_users(current_user: dict = Depends(get_current_user), tracker: PresenceTracker = Depends(get_presence_tracker)):
    return {"online": tracker.online_users()}


@router.get("/{user_id}")
async def presence(user_id: str, current_user: dict = Depends(get_current_user), tracker: PresenceTracker = Depends(get_presence_tracker)):
    """
    Online status of one user as seen by this process. Users that never
    connected are reported offline with no last_seen.
    """
    return tracker.snapshot(user_id)
