from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatsync.models.conversation import ConversationDocument, LastMessageSnapshot
from chatsync.utils.ids import utcnow


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("members", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])
        await self.collection.create_index([("is_global", ASCENDING)])

    async def get_by_id(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    async def find_global(self) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"is_global": True})

    async def ensure_global(self, name: str) -> ConversationDocument:
        now = utcnow()
        return await self.collection.find_one_and_update(
            {"is_global": True},
            {
                "$setOnInsert": {
                    "name": name,
                    "is_group": True,
                    "is_global": True,
                    "admin_id": None,
                    "members": [],
                    "last_message": None,
                    "last_message_at": now,
                    "unread_counters": {},
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def add_member(self, conversation_id: ObjectId, user_id: str) -> bool:
        # the $ne guard makes concurrent joins by the same user a no-op
        result = await self.collection.update_one(
            {"_id": conversation_id, "members": {"$ne": user_id}},
            {
                "$push": {"members": user_id},
                "$set": {f"unread_counters.{user_id}": 0, "updated_at": utcnow()},
            },
        )
        return bool(result.modified_count)

    async def find_direct(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one(
            {
                "is_group": False,
                "is_global": False,
                "members": {"$all": [user_a, user_b], "$size": 2},
            }
        )

    async def create(self, doc: Dict[str, Any]) -> ConversationDocument:
        now = utcnow()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def list_for_user(self, user_id: str, limit: int = 200) -> List[ConversationDocument]:
        query = {"members": user_id, "is_global": False}
        sort = [("last_message_at", DESCENDING), ("updated_at", DESCENDING)]
        cursor = self.collection.find(query).sort(sort).limit(limit)
        return await cursor.to_list(length=limit)

    async def apply_new_message(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        recipient_ids: Iterable[str],
        created_at: datetime,
    ) -> Optional[ConversationDocument]:
        """
        Update the unread ledger for a new message in one document write.

        Counters change with ``$inc`` so concurrent sends never lose each
        other's increments. ``last_message_at`` only moves forward. This write
        is not idempotent; ``set_last_message`` is the part that can be
        repeated safely.
        """
        update: Dict[str, Any] = {
            "$set": {f"unread_counters.{sender_id}": 0, "updated_at": utcnow()},
            "$max": {"last_message_at": created_at},
        }
        increments = {f"unread_counters.{member}": 1 for member in recipient_ids if member != sender_id}
        if increments:
            update["$inc"] = increments

        return await self.collection.find_one_and_update(
            {"_id": conversation_id},
            update,
            return_document=ReturnDocument.AFTER,
        )

    async def set_last_message(
        self,
        conversation_id: ObjectId,
        snapshot: LastMessageSnapshot,
        created_at: datetime,
    ) -> bool:
        # only while this message is still the newest; a later send has
        # already moved last_message_at past it
        result = await self.collection.update_one(
            {"_id": conversation_id, "last_message_at": created_at},
            {"$set": {"last_message": snapshot}},
        )
        return bool(result.matched_count)

    async def reset_unread(self, conversation_id: ObjectId, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": conversation_id},
            {"$set": {f"unread_counters.{user_id}": 0}},
        )
