from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from chatsync.schemas.user import MemberProfile, profile_for


MessageTypeField = Literal["text", "image", "file"]


class SendMessageRequest(BaseModel):

    conversation_id: str
    type: MessageTypeField = "text"
    text: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: int = Field(default=0, ge=0)


class ReactionRequest(BaseModel):

    reaction: str


class EnsureConversationRequest(BaseModel):

    target_user_id: Optional[str] = None


class CreateGroupRequest(BaseModel):

    name: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)


class ReactionOut(BaseModel):

    user_id: str
    reaction: str
    created_at: Optional[datetime] = None


class MessageOut(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    sender_avatar: str = ""
    text: str = ""
    type: MessageTypeField = "text"
    file_url: str = ""
    file_name: str = ""
    file_size: int = 0
    status: Literal["sent", "delivered", "seen"] = "sent"
    read_by: List[str] = Field(default_factory=list)
    reactions: List[ReactionOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "MessageOut":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            sender_name=doc.get("sender_name") or "",
            sender_avatar=doc.get("sender_avatar") or "",
            text=doc.get("text") or "",
            type=doc.get("type") or "text",
            file_url=doc.get("file_url") or "",
            file_name=doc.get("file_name") or "",
            file_size=doc.get("file_size") or 0,
            status=doc.get("status") or "sent",
            read_by=list(doc.get("read_by") or []),
            reactions=[ReactionOut(**entry) for entry in doc.get("reactions") or []],
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at"),
        )


class LastMessageOut(BaseModel):

    text: str = ""
    sender_id: str
    sender_name: str = ""
    sender_avatar: str = ""
    type: MessageTypeField = "text"
    created_at: datetime


class ConversationSummary(BaseModel):

    id: str
    name: str
    is_group: bool = False
    is_global: bool = False
    avatar: str = ""
    members: List[MemberProfile] = Field(default_factory=list)
    unread_count: int = 0
    last_message: Optional[LastMessageOut] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    admin_id: Optional[str] = None

    @classmethod
    def from_document(
        cls,
        doc: Mapping[str, Any],
        profiles: Mapping[str, Mapping[str, Any]],
        current_user_id: str,
        global_name: str = "Global Chat",
    ) -> "ConversationSummary":
        is_group = bool(doc.get("is_group"))
        is_global = bool(doc.get("is_global"))
        members = [profile_for(member_id, profiles.get(member_id)) for member_id in doc.get("members") or []]
        others = [m for m in members if m.user_id != current_user_id]
        primary = others[0] if others else (members[0] if members else None)

        if is_global:
            title = global_name
        elif doc.get("name"):
            title = doc["name"]
        elif is_group:
            title = "Group chat"
        else:
            title = primary.display_name if primary else "Conversation"

        last = doc.get("last_message")
        counters: Dict[str, int] = doc.get("unread_counters") or {}
        return cls(
            id=str(doc["_id"]),
            name=title,
            is_group=is_group,
            is_global=is_global,
            avatar="" if is_group or primary is None else primary.avatar_url,
            members=members,
            unread_count=int(counters.get(current_user_id, 0)),
            last_message=LastMessageOut(**last) if last else None,
            last_message_at=doc.get("last_message_at") or doc.get("updated_at"),
            created_at=doc.get("created_at"),
            admin_id=doc.get("admin_id"),
        )


class Pagination(BaseModel):

    page: int
    limit: int
    has_more: bool


class MessageHistory(BaseModel):

    messages: List[MessageOut]
    pagination: Pagination


class UploadedFile(BaseModel):

    file_url: str
    file_name: str
    file_size: int
    mime_type: str
