from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from jobchat.utils.store_errors import translate_store_errors


class UserRepository:
    """User Directory, read for display only."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @translate_store_errors
    async def get_user_by_id(self, user_id: str) -> Optional[dict]:
        keys = [user_id, ObjectId(user_id)] if ObjectId.is_valid(user_id) else [user_id]
        user = await self._collection.find_one({"_id": {"$in": keys}}, {"name": 1, "avatar": 1})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user
