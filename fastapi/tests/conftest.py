"""Shared fixtures: an in-memory Motor database and the services built on it."""

from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest
from mongomock_motor import AsyncMongoMockClient

from jobchat.database.connection import ensure_indexes
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.repositories.job_repository import JobRepository
from jobchat.repositories.legacy_message_repository import LegacyMessageRepository
from jobchat.repositories.message_repository import MessageRepository
from jobchat.repositories.user_repository import UserRepository
from jobchat.services.chat_service import ChatService
from jobchat.utils import realtime_bus


class RecordingBus:

    enabled = True

    def __init__(self) -> None:
        self.published: List[tuple] = []

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, message))

    async def close(self) -> None:
        return


@pytest.fixture(autouse=True, name="bus")
def fixture_bus():
    bus = RecordingBus()
    realtime_bus._bus = bus
    yield bus
    realtime_bus._bus = None


@pytest.fixture(name="db")
async def fixture_db():
    db = AsyncMongoMockClient()["jobchat_test"]
    await ensure_indexes(db)
    return db


@pytest.fixture(name="conversation_repo")
def fixture_conversation_repo(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.fixture(name="message_repo")
def fixture_message_repo(db) -> MessageRepository:
    return MessageRepository(db)


@pytest.fixture(name="chat_service")
def fixture_chat_service(db, conversation_repo, message_repo) -> ChatService:
    return ChatService(
        message_repo,
        conversation_repo,
        LegacyMessageRepository(db),
        UserRepository(db),
        JobRepository(db),
        preview_max_length=20,
    )


@pytest.fixture(name="replicator")
def fixture_replicator(chat_service):
    return chat_service.replicator


@pytest.fixture(name="tracker")
def fixture_tracker(chat_service):
    return chat_service.tracker


@pytest.fixture(name="bridge")
def fixture_bridge(chat_service):
    return chat_service.bridge


async def seed_legacy(db, sender_id: str, receiver_id: str, content: str, minute: int, **extra: Any) -> str:
    doc: Dict[str, Any] = {
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "content": content,
        "type": "general",
        "is_read": False,
        "created_at": datetime(2024, 3, 1, 12, minute, tzinfo=timezone.utc),
    }
    doc.update(extra)
    result = await db["legacy_messages"].insert_one(doc)
    return str(result.inserted_id)


async def replica_messages(db, owner_id: str, conversation_id: str) -> List[dict]:
    cursor = db["messages"].find({"owner_id": owner_id, "conversation_id": conversation_id}).sort("created_at", 1)
    return await cursor.to_list(length=None)
