import asyncio
import logging
from typing import List, Optional, Tuple

from jobchat.errors import ChatStoreError, NotFound
from jobchat.models.message import MessageType
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.repositories.job_repository import JobRepository
from jobchat.repositories.legacy_message_repository import LegacyMessageRepository
from jobchat.repositories.message_repository import MessageRepository
from jobchat.repositories.user_repository import UserRepository
from jobchat.schemas.chat import (
    Conversation,
    ConversationPreview,
    Counterpart,
    Message,
    ResolvedConversation,
)
from jobchat.services.delivery_tracker import DeliveryTracker
from jobchat.services.legacy_bridge import LegacyBridge
from jobchat.services.message_replicator import MessageReplicator
from jobchat.utils.conversation_ids import is_conversation_id, parse_conversation_id
from jobchat.utils.realtime_bus import publish_to_users


logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Conversation"
DIRECT_TITLE = "Direct Message"


class ChatService:
    """Entry point for the presentation layer.

    ``resolve`` accepts either a conversation id or a legacy message id and
    returns the caller's view of the conversation, migrating legacy history on
    first access.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        legacy_repo: LegacyMessageRepository,
        user_repo: UserRepository,
        job_repo: JobRepository,
        preview_max_length: int = 200,
        message_page_size: int = 50,
        conversation_page_size: int = 20,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._job_repo = job_repo
        self._message_page_size = message_page_size
        self._conversation_page_size = conversation_page_size
        self.replicator = MessageReplicator(conversation_repo, message_repo, preview_max_length)
        self.tracker = DeliveryTracker(message_repo, conversation_repo)
        self.bridge = LegacyBridge(legacy_repo, message_repo, self.replicator)

    async def resolve(self, caller_id: str, opaque_id: str, limit: Optional[int] = None) -> ResolvedConversation:
        conversation = await self._find_conversation(caller_id, opaque_id)
        if conversation is None:
            conversation = await self._find_by_legacy_message(caller_id, opaque_id)
        if conversation is None:
            raise NotFound(f"No conversation or legacy message {opaque_id!r} for {caller_id}")

        messages, next_cursor = await self._message_repo.get_messages_by_conversation(
            caller_id, conversation.id, limit=limit or self._message_page_size
        )
        messages = await self._mark_fetched(caller_id, conversation.id, messages)
        messages = await self.tracker.effective_statuses(caller_id, conversation.id, messages)
        title, counterpart = await self._describe(caller_id, conversation)
        return ResolvedConversation(
            conversation=conversation,
            messages=messages,
            title=title or DEFAULT_TITLE,
            counterpart=counterpart,
            next_cursor=next_cursor,
        )

    async def send_message(
        self,
        sender_id: str,
        conversation_id: str,
        content: str,
        type: str = MessageType.GENERAL.value,
        client_message_id: Optional[str] = None,
    ) -> Message:
        message = await self.replicator.send(conversation_id, sender_id, content, type, client_message_id)
        participants, _ = parse_conversation_id(message.conversation_id)
        await publish_to_users(
            [p for p in participants if p != sender_id],
            {"type": "message", "conversation_id": message.conversation_id, "message": message.model_dump(mode="json")},
        )
        return message

    async def mark_all_read(self, caller_id: str, conversation_id: str) -> int:
        conversation = await self._conversation_repo.get(caller_id, conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id!r} not found for {caller_id}")
        updated = await self.tracker.mark_all_read(caller_id, conversation.id, conversation.participants)
        if updated:
            await publish_to_users(
                conversation.other_participants(caller_id),
                {"type": "read", "conversation_id": conversation.id, "reader_id": caller_id},
            )
        return updated

    async def list_conversations(
        self, caller_id: str, limit: Optional[int] = None, cursor: Optional[str] = None
    ) -> Tuple[List[ConversationPreview], Optional[str]]:
        conversations, next_cursor = await self._conversation_repo.list_for(
            caller_id, limit=limit or self._conversation_page_size, cursor=cursor
        )
        previews = await asyncio.gather(*(self._preview(caller_id, c) for c in conversations))
        return list(previews), next_cursor

    async def get_history(
        self, caller_id: str, conversation_id: str, limit: Optional[int] = None, cursor: Optional[str] = None
    ) -> Tuple[List[Message], Optional[str]]:
        conversation = await self._conversation_repo.get(caller_id, conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id!r} not found for {caller_id}")
        messages, next_cursor = await self._message_repo.get_messages_by_conversation(
            caller_id, conversation.id, limit=limit or self._message_page_size, cursor=cursor
        )
        messages = await self.tracker.effective_statuses(caller_id, conversation.id, messages)
        return messages, next_cursor

    async def _find_conversation(self, caller_id: str, opaque_id: str) -> Optional[Conversation]:
        conversation = await self._conversation_repo.get(caller_id, opaque_id)
        if conversation is not None:
            if await self._message_repo.count(caller_id, conversation.id) == 0:
                if await self._migrate_if_needed(caller_id, conversation.id, conversation.participants):
                    conversation = await self._conversation_repo.get(caller_id, conversation.id) or conversation
            return conversation

        if not is_conversation_id(opaque_id):
            return None
        participants, _ = parse_conversation_id(opaque_id)
        if caller_id not in participants:
            return None
        # No replica for the caller yet, but there may be history to bring over.
        if await self._migrate_if_needed(caller_id, opaque_id, participants):
            return await self._conversation_repo.get(caller_id, opaque_id)
        return None

    async def _find_by_legacy_message(self, caller_id: str, opaque_id: str) -> Optional[Conversation]:
        located = await self.bridge.locate(caller_id, opaque_id)
        if located is None:
            return None
        conversation_id, participants = located
        await self.bridge.migrate(conversation_id, participants)
        return await self._conversation_repo.get(caller_id, conversation_id)

    async def _migrate_if_needed(self, caller_id: str, conversation_id: str, participants: List[str]) -> int:
        others = [p for p in participants if p != caller_id]
        if not others or not await self.bridge.has_legacy_history(caller_id, others[0]):
            return 0
        return await self.bridge.migrate(conversation_id, participants)

    async def _mark_fetched(self, caller_id: str, conversation_id: str, messages: List[Message]) -> List[Message]:
        try:
            return await self.tracker.mark_fetched(caller_id, conversation_id, messages)
        except ChatStoreError:
            logger.warning(
                "Could not mark messages delivered",
                extra={"conversation_id": conversation_id, "user_id": caller_id},
                exc_info=True,
            )
            return messages

    async def _preview(self, caller_id: str, conversation: Conversation) -> ConversationPreview:
        title, counterpart = await self._describe(caller_id, conversation)
        return ConversationPreview(
            id=conversation.id,
            job_id=conversation.job_id,
            title=title or DIRECT_TITLE,
            counterpart=counterpart,
            last_message=conversation.last_message,
            unread_count=conversation.unread_for(caller_id),
            updated_at=conversation.updated_at,
        )

    async def _describe(self, caller_id: str, conversation: Conversation) -> Tuple[Optional[str], Counterpart]:
        """Job title (None when there is no job) and the other participant, for display."""
        others = conversation.other_participants(caller_id)
        other_id = others[0] if others else caller_id
        counterpart = Counterpart(id=other_id)
        title = None
        try:
            user = await self._user_repo.get_user_by_id(other_id)
            if user:
                counterpart = Counterpart(id=other_id, name=user.get("name") or counterpart.name, avatar=user.get("avatar"))
            if conversation.job_id:
                job = await self._job_repo.get_job_by_id(conversation.job_id)
                if job and job.get("title"):
                    title = job["title"]
        except ChatStoreError:
            logger.warning("Directory lookup failed", extra={"conversation_id": conversation.id}, exc_info=True)
        return title, counterpart
