from datetime import datetime
from typing import Optional, TypedDict


class UserProfileDocument(TypedDict, total=False):

    _id: str
    user_id: str
    display_name: str
    avatar_url: str
    email: Optional[str]
    last_seen_at: Optional[datetime]
