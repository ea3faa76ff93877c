from datetime import datetime
from typing import List, Literal, TypedDict

from bson import ObjectId


MessageType = Literal["text", "image", "file"]
MessageStatus = Literal["sent", "delivered", "seen"]

MESSAGE_TYPES = ("text", "image", "file")


class ReactionEntry(TypedDict):
    user_id: str
    reaction: str
    created_at: datetime


class MessageDocument(TypedDict, total=False):
    _id: ObjectId
    conversation_id: ObjectId
    sender_id: str
    # profile snapshot taken at send time
    sender_name: str
    sender_avatar: str
    text: str
    type: MessageType
    file_url: str
    file_name: str
    file_size: int
    # single flag for the whole conversation, only ever advances to "seen"
    status: MessageStatus
    read_by: List[str]
    # at most one entry per user
    reactions: List[ReactionEntry]
    created_at: datetime
    updated_at: datetime
