import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from jobchat.core.config import get_settings
from jobchat.database.connection import mongo_db_dependency
from jobchat.errors import PartialFanoutFailure, TransientIO
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.repositories.job_repository import JobRepository
from jobchat.repositories.legacy_message_repository import LegacyMessageRepository
from jobchat.repositories.message_repository import MessageRepository
from jobchat.repositories.user_repository import UserRepository
from jobchat.schemas.chat import SendMessageRequest
from jobchat.services.chat_service import ChatService
from jobchat.utils.dependencies import get_current_user_id


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["chat"])


def get_chat_service(db = Depends(mongo_db_dependency)) -> ChatService:
    settings = get_settings()
    return ChatService(
        MessageRepository(db),
        ConversationRepository(db),
        LegacyMessageRepository(db),
        UserRepository(db),
        JobRepository(db),
        preview_max_length=settings.preview_max_length,
        message_page_size=settings.message_page_size,
        conversation_page_size=settings.conversation_page_size,
    )


@router.get("")
async def list_conversations(limit: Optional[int] = Query(None, ge=1, le=100), cursor: Optional[str] = None, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    items, next_cursor = await service.list_conversations(current_user_id, limit=limit, cursor=cursor)
    return {"items": [it.model_dump(mode="json") for it in items], "next_cursor": next_cursor}


@router.get("/{opaque_id}")
async def resolve_conversation(opaque_id: str, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    # opaque_id may be a conversation id or a legacy message id
    resolved = await service.resolve(current_user_id, opaque_id)
    return resolved.model_dump(mode="json")


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: Optional[int] = Query(None, ge=1, le=200), cursor: Optional[str] = None, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    messages, next_cursor = await service.get_history(current_user_id, conversation_id, limit=limit, cursor=cursor)
    return {"items": [m.model_dump(mode="json") for m in messages], "next_cursor": next_cursor}


@router.post("/{conversation_id}/messages", status_code=201)
async def send_message(conversation_id: str, body: SendMessageRequest, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    message = await service.send_message(
        current_user_id, conversation_id, body.content, body.type, body.client_message_id
    )
    return message.model_dump(mode="json")


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    try:
        count = await service.mark_all_read(current_user_id, conversation_id)
    except (PartialFanoutFailure, TransientIO):
        # Read tracking is not user-visible; the next open retries it.
        logger.warning("mark_all_read failed", extra={"conversation_id": conversation_id}, exc_info=True)
        count = 0
    return {"updated": count}
