from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from jobchat.models.legacy_message import LegacyMessageDocument
from jobchat.utils.store_errors import translate_store_errors


def _id_candidates(legacy_id: str) -> List[Any]:
    # Legacy ids were written both as ObjectIds and as plain strings.
    candidates: List[Any] = [legacy_id]
    if ObjectId.is_valid(legacy_id):
        candidates.append(ObjectId(legacy_id))
    return candidates


def _normalize(doc: Dict[str, Any]) -> LegacyMessageDocument:
    doc["_id"] = str(doc["_id"])
    return doc  # type: ignore[return-value]


class LegacyMessageRepository:
    """Read-only access to pre-conversation flat messages."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("legacy_messages")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            [("sender_id", ASCENDING), ("receiver_id", ASCENDING), ("created_at", ASCENDING)]
        )
        await self._collection.create_index([("receiver_id", ASCENDING)])

    @translate_store_errors
    async def get_for_user(self, user_id: str, legacy_id: str) -> Optional[LegacyMessageDocument]:
        doc = await self._collection.find_one(
            {
                "_id": {"$in": _id_candidates(legacy_id)},
                "$or": [{"sender_id": user_id}, {"receiver_id": user_id}],
            }
        )
        if not doc:
            return None
        return _normalize(doc)

    @translate_store_errors
    async def list_between(self, user_a: str, user_b: str) -> List[LegacyMessageDocument]:
        cursor = self._collection.find(
            {
                "$or": [
                    {"sender_id": user_a, "receiver_id": user_b},
                    {"sender_id": user_b, "receiver_id": user_a},
                ]
            }
        ).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        items = await cursor.to_list(length=None)
        return [_normalize(it) for it in items]

    @translate_store_errors
    async def exists_between(self, user_a: str, user_b: str) -> bool:
        doc = await self._collection.find_one(
            {
                "$or": [
                    {"sender_id": user_a, "receiver_id": user_b},
                    {"sender_id": user_b, "receiver_id": user_a},
                ]
            },
            {"_id": 1},
        )
        return doc is not None
