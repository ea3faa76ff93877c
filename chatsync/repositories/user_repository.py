from datetime import datetime
from typing import Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from chatsync.models.user import UserProfileDocument


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("user_profiles")

    async def get_profile(self, user_id: str) -> Optional[UserProfileDocument]:

        return await self._collection.find_one({"_id": user_id})

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfileDocument]:

        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": unique_ids}})
        profiles = {}
        async for doc in cursor:
            profiles[doc["_id"]] = doc
        return profiles

    async def upsert_profile(self, user_id: str, fields: dict) -> UserProfileDocument:

        return await self._collection.find_one_and_update(
            {"_id": user_id},
            {"$set": {**fields, "user_id": user_id}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def touch_last_seen(self, user_id: str, seen_at: datetime) -> None:

        await self._collection.update_one(
            {"_id": user_id},
            {"$set": {"last_seen_at": seen_at, "user_id": user_id}},
            upsert=True,
        )
