import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from chatsync.exceptions import NotFoundError, UpstreamError, ValidationFailed
from chatsync.models.message import MESSAGE_TYPES
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.chat import LastMessageOut, MessageOut
from chatsync.schemas.user import profile_for
from chatsync.services.access_guard import ConversationAccessGuard
from chatsync.utils.ids import parse_object_id, utcnow
from chatsync.utils.realtime_bus import Broadcaster
from chatsync.utils.retry import call_with_retry


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_REACTION_LENGTH = 32


def last_message_snapshot(message: Dict[str, Any]) -> Dict[str, Any]:
    msg_type = message.get("type", "text")
    return {
        "text": message.get("text", "") if msg_type == "text" else f"Sent a {msg_type}",
        "sender_id": message["sender_id"],
        "sender_name": message.get("sender_name", ""),
        "sender_avatar": message.get("sender_avatar", ""),
        "type": msg_type,
        "created_at": message["created_at"],
    }


class ChatService:
    """
    Message ingestion, history with read reconciliation, and reactions.

    Every operation checks access through the conversation guard before it
    writes, and broadcasts only after the store has accepted the change.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        broadcaster: Broadcaster,
        guard: Optional[ConversationAccessGuard] = None,
        *,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._broadcaster = broadcaster
        self._guard = guard or ConversationAccessGuard(conversation_repo)
        self._retry_attempts = retry_attempts
        self._retry_backoff = retry_backoff

    async def send_message(
        self,
        sender_id: str,
        conversation_id: Optional[str],
        *,
        message_type: str = "text",
        text: Optional[str] = None,
        file_url: Optional[str] = None,
        file_name: Optional[str] = None,
        file_size: int = 0,
    ) -> Dict[str, Any]:
        if not conversation_id:
            raise ValidationFailed("conversation_id is required")
        if message_type not in MESSAGE_TYPES:
            raise ValidationFailed(f"Unsupported message type: {message_type}")
        clean_text = (text or "").strip()
        if message_type == "text" and not clean_text:
            raise ValidationFailed("Text is required for text messages")
        if message_type in ("image", "file") and not (file_url or "").strip():
            raise ValidationFailed("file_url is required for file messages")

        conversation = await self._guard.resolve(conversation_id, sender_id)

        sender = profile_for(sender_id, await self._user_repo.get_profile(sender_id))
        now = utcnow()
        message = await self._message_repo.insert(
            {
                "conversation_id": conversation["_id"],
                "sender_id": sender_id,
                "sender_name": sender.display_name,
                "sender_avatar": sender.avatar_url,
                "text": clean_text if message_type == "text" else "",
                "type": message_type,
                "file_url": (file_url or "").strip(),
                "file_name": file_name or "",
                "file_size": file_size or 0,
                "status": "sent",
                "read_by": [sender_id],
                "reactions": [],
                "created_at": now,
                "updated_at": now,
            }
        )

        conversation = await self._update_projection(conversation, message)
        await self._fan_out_new_message(conversation, message)
        return message

    async def _update_projection(self, conversation: Dict[str, Any], message: Dict[str, Any]) -> Dict[str, Any]:
        # the message is already stored; keep trying so the conversation
        # projection does not stay behind it. The counter write and the
        # last_message write are retried separately so a failure of the
        # second never repeats the increments of the first.
        conversation_id = conversation["_id"]
        recipients = [m for m in conversation.get("members") or [] if m != message["sender_id"]]
        snapshot = last_message_snapshot(message)

        async def apply_counters():
            return await self._conversation_repo.apply_new_message(
                conversation_id, message["sender_id"], recipients, message["created_at"]
            )

        async def apply_last_message():
            return await self._conversation_repo.set_last_message(conversation_id, snapshot, message["created_at"])

        updated = await self._retry_projection(apply_counters, f"unread counters of conversation {conversation_id}", message)
        is_latest = await self._retry_projection(
            apply_last_message, f"last message of conversation {conversation_id}", message
        )
        updated = updated if updated is not None else conversation
        if is_latest:
            updated["last_message"] = snapshot
        return updated

    async def _retry_projection(self, func, operation: str, message: Dict[str, Any]):
        try:
            return await call_with_retry(
                func,
                max_attempts=self._retry_attempts,
                backoff_seconds=self._retry_backoff,
                retry_on=(PyMongoError,),
                operation=operation,
            )
        except PyMongoError as exc:
            logger.error("Message %s stored but %s was not updated", message["_id"], operation)
            raise UpstreamError("Message saved but the conversation could not be updated") from exc

    async def _fan_out_new_message(self, conversation: Dict[str, Any], message: Dict[str, Any]) -> None:
        conversation_id = str(conversation["_id"])
        public = MessageOut.from_document(message).model_dump(mode="json")
        await self._broadcaster.to_conversation(
            conversation_id, "message:new", {"conversation_id": conversation_id, "message": public}
        )

        counters = conversation.get("unread_counters") or {}
        snapshot = LastMessageOut(**last_message_snapshot(message)).model_dump(mode="json")
        notification = {
            "type": "new_message",
            "conversation_id": conversation_id,
            "message_id": public["id"],
            "message": {"text": snapshot["text"], "sender_name": snapshot["sender_name"]},
        }
        # members viewing the conversation also get these; clients dedupe by id
        for member_id in conversation.get("members") or []:
            if member_id == message["sender_id"]:
                continue
            await self._broadcaster.to_user(
                member_id,
                "conversation:update",
                {
                    "conversation_id": conversation_id,
                    "unread_count": int(counters.get(member_id, 0)),
                    "last_message": snapshot,
                },
            )
            await self._broadcaster.to_user(member_id, "notification:new", notification)

    async def get_history(
        self,
        conversation_id: str,
        reader_id: str,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        if page < 1:
            raise ValidationFailed("page must be at least 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationFailed(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        conversation = await self._guard.resolve(conversation_id, reader_id)
        oid = conversation["_id"]

        messages = await self._message_repo.list_page(oid, page=page, limit=limit)
        messages.reverse()

        unread_ids = [
            m["_id"] for m in messages
            if m["sender_id"] != reader_id and reader_id not in (m.get("read_by") or [])
        ]
        if unread_ids:
            await self._message_repo.mark_seen(oid, unread_ids, reader_id)
        await self._conversation_repo.reset_unread(oid, reader_id)

        marked = set(unread_ids)
        for message in messages:
            if message["_id"] in marked:
                message.setdefault("read_by", []).append(reader_id)
                message["status"] = "seen"

        # the reader's other sessions drop their badge too
        await self._broadcaster.to_user(
            reader_id, "conversation:update", {"conversation_id": str(oid), "unread_count": 0}
        )
        pagination = {"page": page, "limit": limit, "has_more": len(messages) == limit}
        return messages, pagination

    async def add_reaction(self, message_id: str, user_id: str, reaction: Optional[str]) -> Dict[str, Any]:
        value = (reaction or "").strip()
        if not value:
            raise ValidationFailed("reaction is required")
        if len(value) > MAX_REACTION_LENGTH:
            raise ValidationFailed("reaction is too long")

        oid = parse_object_id(message_id, "Message")
        message = await self._message_repo.get_by_id(oid)
        if message is None:
            raise NotFoundError("Message not found")

        await self._guard.resolve(message["conversation_id"], user_id)

        updated = await self._message_repo.replace_reaction(oid, user_id, value, utcnow())
        if updated is None:
            raise NotFoundError("Message not found")

        conversation_id = str(message["conversation_id"])
        await self._broadcaster.to_conversation(
            conversation_id,
            "message:react",
            {
                "message_id": str(oid),
                "user_id": user_id,
                "reaction": value,
                "conversation_id": conversation_id,
            },
        )
        return updated
