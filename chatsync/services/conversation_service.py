import logging
from typing import Any, Dict, List, Optional, Tuple

from chatsync.exceptions import ValidationFailed
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.chat import ConversationSummary
from chatsync.services.access_guard import ConversationAccessGuard
from chatsync.utils.ids import check_user_id, utcnow


logger = logging.getLogger(__name__)


class ConversationService:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        guard: Optional[ConversationAccessGuard] = None,
        global_name: str = "Global Chat",
    ) -> None:
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._guard = guard or ConversationAccessGuard(conversation_repo)
        self._global_name = global_name

    async def ensure_global_room(self) -> Dict[str, Any]:
        room = await self._conversation_repo.ensure_global(self._global_name)
        logger.info("Global conversation ready: %s", room["_id"])
        return room

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        conversations = await self._conversation_repo.list_for_user(user_id)
        global_room = await self._conversation_repo.find_global()
        if global_room is not None:
            if user_id not in (global_room.get("members") or []):
                await self._guard.join_global(global_room, user_id)
            conversations.insert(0, global_room)
        return await self._summaries(conversations, user_id)

    async def ensure_direct(self, user_id: str, target_user_id: Optional[str]) -> Tuple[ConversationSummary, bool]:
        if not target_user_id:
            raise ValidationFailed("target_user_id required")
        check_user_id(target_user_id)
        if target_user_id == user_id:
            raise ValidationFailed("Cannot start a conversation with yourself")

        created = False
        conversation = await self._conversation_repo.find_direct(user_id, target_user_id)
        if conversation is None:
            conversation = await self._conversation_repo.create(
                {
                    "name": "",
                    "is_group": False,
                    "is_global": False,
                    "admin_id": None,
                    "members": [user_id, target_user_id],
                    "last_message": None,
                    "last_message_at": None,
                    "unread_counters": {user_id: 0, target_user_id: 0},
                }
            )
            created = True
            logger.info("Created direct conversation %s", conversation["_id"])
        summary = (await self._summaries([conversation], user_id))[0]
        return summary, created

    async def get_detail(self, conversation_id: str, user_id: str) -> ConversationSummary:
        conversation = await self._guard.resolve(conversation_id, user_id)
        return (await self._summaries([conversation], user_id))[0]

    async def create_group(self, user_id: str, name: Optional[str], member_ids: Optional[List[str]]) -> ConversationSummary:
        clean_name = (name or "").strip()
        if not clean_name or not member_ids:
            raise ValidationFailed("Name and at least one member are required")
        for member_id in member_ids:
            check_user_id(member_id)

        members = list(dict.fromkeys([user_id, *member_ids]))
        conversation = await self._conversation_repo.create(
            {
                "name": clean_name,
                "is_group": True,
                "is_global": False,
                "admin_id": user_id,
                "members": members,
                "last_message": None,
                "last_message_at": utcnow(),
                "unread_counters": {member: 0 for member in members},
            }
        )
        logger.info("Created group %s with %s members", conversation["_id"], len(members))
        return (await self._summaries([conversation], user_id))[0]

    async def _summaries(self, conversations: List[Dict[str, Any]], user_id: str) -> List[ConversationSummary]:
        member_ids = [m for c in conversations for m in c.get("members") or []]
        profiles = await self._user_repo.get_profiles(member_ids)
        return [
            ConversationSummary.from_document(c, profiles, user_id, global_name=self._global_name)
            for c in conversations
        ]
