from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from jobchat.schemas.chat import Conversation, LastMessage
from jobchat.utils.conversation_ids import (
    canonical_conversation_id,
    normalize_participants,
    parse_conversation_id,
)
from jobchat.utils.fanout import fan_out
from jobchat.utils.store_errors import translate_store_errors


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConversationRepository:
    """Per-participant conversation replicas.

    Every conversation is stored once per participant (``owner_id``). Writes that
    concern the whole conversation are fanned out to each replica separately.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("owner_id", ASCENDING), ("conversation_id", ASCENDING)], unique=True
        )
        await self.collection.create_index([("owner_id", ASCENDING), ("updated_at", DESCENDING)])

    async def create(self, participants: Iterable[str], context_id: Optional[str] = None) -> Conversation:
        members = normalize_participants(participants)
        conversation_id = canonical_conversation_id(members, context_id)
        now = datetime.now(timezone.utc)
        base: Dict[str, Any] = {
            "participants": members,
            "job_id": context_id,
            "last_message": None,
            "unread_counters": {p: 0 for p in members},
            "created_at": now,
            "updated_at": now,
        }
        await fan_out(
            "create",
            {owner: self._insert_replica(conversation_id, owner, base) for owner in members},
        )
        return Conversation(id=conversation_id, **base)

    @translate_store_errors
    async def _insert_replica(self, conversation_id: str, owner_id: str, base: Dict[str, Any]) -> bool:
        # $setOnInsert keeps an existing replica (and its counters) untouched.
        result = await self.collection.update_one(
            {"conversation_id": conversation_id, "owner_id": owner_id},
            {"$setOnInsert": dict(base)},
            upsert=True,
        )
        return result.upserted_id is not None

    @translate_store_errors
    async def get(self, as_participant: str, conversation_id: str) -> Optional[Conversation]:
        doc = await self.collection.find_one({"conversation_id": conversation_id, "owner_id": as_participant})
        if not doc:
            return None
        return Conversation.from_document(doc)

    @translate_store_errors
    async def list_for(
        self, participant: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[Conversation], Optional[str]]:
        query: Dict[str, Any] = {"owner_id": participant}
        sort = [("updated_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # Cursor format: timestamp_ms:object_id_hex
            try:
                ts_str, oid_hex = cursor.split(":", 1)
                ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
                oid = ObjectId(oid_hex)
            except (ValueError, InvalidId):
                pass
            else:
                query["$or"] = [
                    {"updated_at": {"$lt": ts}},
                    {"updated_at": ts, "_id": {"$lt": oid}},
                ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(_as_utc(last["updated_at"]).timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        return [Conversation.from_document(it) for it in items], next_cursor

    async def touch(
        self,
        conversation_id: str,
        participants: Iterable[str],
        preview: LastMessage,
        increment_for: Iterable[str],
    ) -> None:
        """Update the preview on every replica and bump recipients' unread counters.

        The preview is last-writer-wins; counters are incremented server-side so
        concurrent sends never lose an increment.
        """
        owners = list(participants)
        increments = {f"unread_counters.{p}": 1 for p in set(increment_for)}
        update: Dict[str, Any] = {
            "$set": {
                "last_message": preview.model_dump(),
                "updated_at": datetime.now(timezone.utc),
            },
        }
        if increments:
            update["$inc"] = increments
        await fan_out(
            "touch",
            {owner: self._update_replica(conversation_id, owner, update) for owner in owners},
        )

    async def reset_unread(self, participant: str, conversation_id: str, participants: Iterable[str]) -> None:
        # Only the participant's own counter field is written, on every replica.
        update = {"$set": {f"unread_counters.{participant}": 0}}
        await fan_out(
            "reset_unread",
            {owner: self._update_replica(conversation_id, owner, update, upsert=False) for owner in participants},
        )

    @translate_store_errors
    async def _update_replica(
        self, conversation_id: str, owner_id: str, update: Dict[str, Any], upsert: bool = True
    ) -> None:
        if upsert:
            # Recreates a replica lost to an earlier partial create.
            participants, context_id = parse_conversation_id(conversation_id)
            update = dict(update)
            update["$setOnInsert"] = {
                "participants": participants,
                "job_id": context_id,
                "created_at": datetime.now(timezone.utc),
            }
        await self.collection.update_one(
            {"conversation_id": conversation_id, "owner_id": owner_id},
            update,
            upsert=upsert,
        )
