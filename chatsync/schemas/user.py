from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, EmailStr, Field


def fallback_display_name(user_id: str) -> str:
    return f"User {user_id[-4:]}"


class MemberProfile(BaseModel):

    user_id: str
    display_name: str
    avatar_url: str = ""
    email: Optional[str] = None
    last_seen_at: Optional[datetime] = None


class ProfileUpdate(BaseModel):

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    avatar_url: Optional[str] = None
    email: Optional[EmailStr] = None


def profile_for(user_id: str, doc: Optional[Mapping[str, Any]]) -> MemberProfile:
    """Public profile for ``user_id``, with a stub when no profile is stored."""
    if not doc:
        return MemberProfile(user_id=user_id, display_name=fallback_display_name(user_id))
    return MemberProfile(
        user_id=user_id,
        display_name=doc.get("display_name") or fallback_display_name(user_id),
        avatar_url=doc.get("avatar_url") or "",
        email=doc.get("email"),
        last_seen_at=doc.get("last_seen_at"),
    )
