import logging
from typing import Any, Dict

from chatsync.exceptions import AccessDeniedError, NotFoundError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.utils.ids import parse_object_id


logger = logging.getLogger(__name__)


class ConversationAccessGuard:
    """
    Resolves a conversation and checks that a user may use it.

    The global conversation admits every authenticated user: a first visit
    appends the user to ``members`` (persisted, never undone). Any other
    conversation requires membership. Non-members get ``AccessDeniedError``,
    which renders as a 404 just like an unknown id.
    """

    def __init__(self, conversation_repo: ConversationRepository) -> None:
        self._conversation_repo = conversation_repo

    async def resolve(self, conversation_id: Any, user_id: str) -> Dict[str, Any]:
        oid = parse_object_id(conversation_id)
        conversation = await self._conversation_repo.get_by_id(oid)
        if conversation is None:
            raise NotFoundError("Conversation not found")

        members = list(conversation.get("members") or [])
        if conversation.get("is_global"):
            if user_id not in members:
                await self.join_global(conversation, user_id)
            return conversation

        if user_id not in members:
            logger.warning("User %s denied access to conversation %s", user_id, oid)
            raise AccessDeniedError()
        return conversation

    async def join_global(self, conversation: Dict[str, Any], user_id: str) -> None:
        joined = await self._conversation_repo.add_member(conversation["_id"], user_id)
        if joined:
            logger.info("User %s joined the global conversation", user_id)
        # keep the in-memory copy consistent whether or not this call won the race
        members = conversation.setdefault("members", [])
        if user_id not in members:
            members.append(user_id)
        conversation.setdefault("unread_counters", {}).setdefault(user_id, 0)
