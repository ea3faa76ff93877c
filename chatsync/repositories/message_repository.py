from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatsync.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])

    async def insert(self, doc: Dict[str, Any]) -> MessageDocument:
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get_by_id(self, message_id: ObjectId) -> Optional[MessageDocument]:
        return await self.collection.find_one({"_id": message_id})

    async def list_page(self, conversation_id: ObjectId, page: int = 1, limit: int = 50) -> List[MessageDocument]:
        # newest first; callers reverse for display
        skip = (page - 1) * limit
        cursor = (
            self.collection.find({"conversation_id": conversation_id})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def mark_seen(self, conversation_id: ObjectId, message_ids: List[ObjectId], reader_id: str) -> int:
        if not message_ids:
            return 0
        result = await self.collection.update_many(
            {
                "_id": {"$in": message_ids},
                "conversation_id": conversation_id,
                "sender_id": {"$ne": reader_id},
                "read_by": {"$ne": reader_id},
            },
            {"$addToSet": {"read_by": reader_id}, "$set": {"status": "seen"}},
        )
        return result.modified_count or 0

    async def replace_reaction(
        self,
        message_id: ObjectId,
        user_id: str,
        reaction: str,
        reacted_at: datetime,
    ) -> Optional[MessageDocument]:
        # at most one entry per user: rewrite the user's entry in place, or
        # push one only while none exists. If a concurrent push by the same
        # user wins, the guarded push misses and the in-place update applies
        # on the next pass.
        for _ in range(2):
            updated = await self.collection.find_one_and_update(
                {"_id": message_id, "reactions.user_id": user_id},
                {
                    "$set": {
                        "reactions.$.reaction": reaction,
                        "reactions.$.created_at": reacted_at,
                        "updated_at": reacted_at,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated
            updated = await self.collection.find_one_and_update(
                {"_id": message_id, "reactions.user_id": {"$ne": user_id}},
                {
                    "$push": {"reactions": {"user_id": user_id, "reaction": reaction, "created_at": reacted_at}},
                    "$set": {"updated_at": reacted_at},
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated
        return await self.collection.find_one({"_id": message_id})
