from fastapi import APIRouter, Depends

from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import MemberProfile, ProfileUpdate, profile_for
from chatsync.utils.dependencies import get_current_user, get_user_repository


router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=MemberProfile)
async def get_me(current_user: dict = Depends(get_current_user), repo: UserRepository = Depends(get_user_repository)):
    user_id = current_user["_id"]
    return profile_for(user_id, await repo.get_profile(user_id))


@router.put("/me", response_model=MemberProfile)
async def update_me(body: ProfileUpdate, current_user: dict = Depends(get_current_user), repo: UserRepository = Depends(get_user_repository)):
    # later profile changes do not rewrite the sender snapshot on old messages
    user_id = current_user["_id"]
    fields = body.model_dump(exclude_none=True)
    doc = await repo.upsert_profile(user_id, fields)
    return profile_for(user_id, doc)
