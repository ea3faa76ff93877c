from datetime import datetime
from typing import Dict, List, Optional, TypedDict

from bson import ObjectId

from chatsync.models.message import MessageType


class LastMessageSnapshot(TypedDict, total=False):
    # denormalized copy of the newest message, refreshed on every send
    text: str
    sender_id: str
    sender_name: str
    sender_avatar: str
    type: MessageType
    created_at: datetime


class ConversationDocument(TypedDict, total=False):
    _id: ObjectId
    name: str
    is_group: bool
    is_global: bool
    admin_id: Optional[str]
    members: List[str]
    last_message: Optional[LastMessageSnapshot]
    last_message_at: Optional[datetime]
    # per-member unread counters (user_id -> count); keys are never pruned
    unread_counters: Dict[str, int]
    created_at: datetime
    updated_at: datetime
