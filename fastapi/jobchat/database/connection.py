import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from jobchat.core.config import get_settings
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.repositories.legacy_message_repository import LegacyMessageRepository
from jobchat.repositories.message_repository import MessageRepository


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None


async def connect_to_mongo() -> None:
    global _client
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.mongodb_url, tz_aware=True)
    db = _client[settings.mongodb_db]
    await ensure_indexes(db)
    logger.info("Connected to MongoDB", extra={"database": settings.mongodb_db})


async def close_mongo_connection() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def get_database() -> AsyncIOMotorDatabase:
    if _client is None:
        raise RuntimeError("MongoDB client is not connected")
    return _client[get_settings().mongodb_db]


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await LegacyMessageRepository(db).ensure_indexes()
