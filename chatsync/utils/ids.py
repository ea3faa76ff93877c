from datetime import datetime, timezone
from typing import Any

from bson import ObjectId

from chatsync.exceptions import NotFoundError, ValidationFailed


def parse_object_id(value: Any, what: str = "Conversation") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or len(value) != 24 or not ObjectId.is_valid(value):
        raise NotFoundError(f"{what} not found")
    return ObjectId(value)


def check_user_id(user_id: Any) -> str:
    # user ids become keys of the unread counter sub-document
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationFailed("user id required")
    if "." in user_id or user_id.startswith("$"):
        raise ValidationFailed("user id contains reserved characters")
    return user_id


def utcnow() -> datetime:
    # Mongo stores milliseconds; truncate so stored and in-memory values compare equal
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)
