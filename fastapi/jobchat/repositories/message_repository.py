from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from jobchat.models.message import DeliveryStatus
from jobchat.schemas.chat import Message
from jobchat.utils.store_errors import translate_store_errors


class MessageRepository:
    """Each participant's private message list, one document per replica."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("owner_id", ASCENDING), ("conversation_id", ASCENDING), ("created_at", ASCENDING)]
        )
        await self.collection.create_index(
            [("owner_id", ASCENDING), ("conversation_id", ASCENDING), ("message_id", ASCENDING)]
        )
        # at most one document per dedupe key in a replica
        await self.collection.create_index(
            [("owner_id", ASCENDING), ("conversation_id", ASCENDING), ("dedupe_key", ASCENDING)],
            unique=True,
            partialFilterExpression={"dedupe_key": {"$type": "string"}},
        )

    @translate_store_errors
    async def save_replica(self, owner_id: str, message: Message, dedupe_key: Optional[str] = None) -> bool:
        """Write ``message`` into ``owner_id``'s list; returns False if it was already there."""
        doc: Dict[str, Any] = {
            "message_id": message.id,
            "conversation_id": message.conversation_id,
            "owner_id": owner_id,
            "sender_id": message.sender_id,
            "content": message.content,
            "type": message.type,
            "created_at": message.created_at,
            "status": message.status.value,
            "status_rank": message.status.rank,
            "read_by": list(message.read_by),
            "dedupe_key": dedupe_key,
        }
        if dedupe_key is None:
            await self.collection.insert_one(doc)
            return True
        key = {"owner_id": owner_id, "conversation_id": message.conversation_id, "dedupe_key": dedupe_key}
        try:
            result = await self.collection.update_one(
                key,
                {"$setOnInsert": {k: v for k, v in doc.items() if k not in key}},
                upsert=True,
            )
        except DuplicateKeyError:
            # a concurrent writer inserted the same key first
            return False
        return result.upserted_id is not None

    @translate_store_errors
    async def get_messages_by_conversation(
        self,
        owner_id: str,
        conversation_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Message], Optional[str]]:
        query: Dict[str, Any] = {"owner_id": owner_id, "conversation_id": conversation_id}
        sort = [("created_at", -1), ("_id", -1)]
        if cursor:
            # cursor format: ts_ms:oid
            try:
                ts_str, oid_hex = cursor.split(":", 1)
                ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
                oid = ObjectId(oid_hex)
            except (ValueError, InvalidId):
                pass
            else:
                query["$or"] = [
                    {"created_at": {"$lt": ts}},
                    {"created_at": ts, "_id": {"$lt": oid}},
                ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            created_at = last["created_at"]
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            next_cursor = f"{int(created_at.timestamp() * 1000)}:{last['_id']}"
        # ascending chronological order for the UI
        return [Message.from_document(it) for it in reversed(items)], next_cursor

    @translate_store_errors
    async def count(self, owner_id: str, conversation_id: str) -> int:
        return await self.collection.count_documents({"owner_id": owner_id, "conversation_id": conversation_id})

    @translate_store_errors
    async def exists(self, owner_id: str, conversation_id: str, message_id: str) -> bool:
        doc = await self.collection.find_one(
            {"owner_id": owner_id, "conversation_id": conversation_id, "message_id": message_id},
            {"_id": 1},
        )
        return doc is not None

    @translate_store_errors
    async def contains_equivalent(
        self,
        owner_id: str,
        conversation_id: str,
        dedupe_key: str,
        sender_id: str,
        content: str,
        created_at: datetime,
    ) -> bool:
        """True if the replica holds this message.

        Matches on the dedupe key, or on (sender, content, timestamp) for
        unkeyed documents only, so two distinct keyed records never collapse.
        """
        doc = await self.collection.find_one(
            {
                "owner_id": owner_id,
                "conversation_id": conversation_id,
                "$or": [
                    {"dedupe_key": dedupe_key},
                    {"dedupe_key": None, "sender_id": sender_id, "content": content, "created_at": created_at},
                ],
            },
            {"_id": 1},
        )
        return doc is not None

    @translate_store_errors
    async def advance_status(
        self,
        owner_id: str,
        conversation_id: str,
        status: DeliveryStatus,
        message_ids: Optional[Iterable[str]] = None,
        add_reader: Optional[str] = None,
    ) -> int:
        """Move incoming messages forward to ``status``; never moves one backward.

        Messages sent by ``owner_id`` itself are left alone, as are failed ones.
        With ``message_ids`` unset every incoming message in the replica is
        considered.
        """
        query: Dict[str, Any] = {
            "owner_id": owner_id,
            "conversation_id": conversation_id,
            "sender_id": {"$ne": owner_id},
            "status_rank": {"$lt": status.rank},
        }
        if message_ids is not None:
            query["message_id"] = {"$in": list(message_ids)}
        update: Dict[str, Any] = {"$set": {"status": status.value, "status_rank": status.rank}}
        if add_reader:
            update["$addToSet"] = {"read_by": add_reader}
        result = await self.collection.update_many(query, update)
        modified = result.modified_count or 0
        if add_reader:
            # Already-READ messages may still be missing this reader.
            reader_query: Dict[str, Any] = {
                "owner_id": owner_id,
                "conversation_id": conversation_id,
                "sender_id": {"$ne": owner_id},
                "status": DeliveryStatus.READ.value,
                "read_by": {"$ne": add_reader},
            }
            if message_ids is not None:
                reader_query["message_id"] = {"$in": list(message_ids)}
            extra = await self.collection.update_many(reader_query, {"$addToSet": {"read_by": add_reader}})
            modified += extra.modified_count or 0
        return modified

    @translate_store_errors
    async def mark_failed(self, owner_id: str, conversation_id: str, message_id: str) -> bool:
        result = await self.collection.update_one(
            {
                "owner_id": owner_id,
                "conversation_id": conversation_id,
                "message_id": message_id,
                "status": {"$in": [DeliveryStatus.SENDING.value, DeliveryStatus.SENT.value]},
            },
            {"$set": {"status": DeliveryStatus.FAILED.value, "status_rank": DeliveryStatus.FAILED.rank}},
        )
        return bool(result.modified_count)

    @translate_store_errors
    async def statuses_in_other_replicas(
        self, owner_id: str, conversation_id: str, message_ids: Iterable[str]
    ) -> Dict[str, Tuple[DeliveryStatus, Set[str]]]:
        """Highest status and readers per message across the other participants' replicas."""
        ids = list(message_ids)
        if not ids:
            return {}
        cur = self.collection.find(
            {"conversation_id": conversation_id, "owner_id": {"$ne": owner_id}, "message_id": {"$in": ids}},
            {"message_id": 1, "status": 1, "read_by": 1},
        )
        found: Dict[str, Tuple[DeliveryStatus, Set[str]]] = {}
        for doc in await cur.to_list(length=None):
            status = DeliveryStatus(doc["status"])
            readers = set(doc.get("read_by") or [])
            previous = found.get(doc["message_id"])
            if previous is not None:
                if previous[0].rank > status.rank:
                    status = previous[0]
                readers |= previous[1]
            found[doc["message_id"]] = (status, readers)
        return found
