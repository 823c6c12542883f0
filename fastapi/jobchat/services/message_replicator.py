import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from jobchat.errors import InvalidParticipants, PartialFanoutFailure
from jobchat.models.message import DeliveryStatus, MessageType
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.repositories.message_repository import MessageRepository
from jobchat.schemas.chat import Conversation, LastMessage, Message
from jobchat.utils.conversation_ids import parse_conversation_id
from jobchat.utils.fanout import fan_out


logger = logging.getLogger(__name__)

_MESSAGE_ID_NAMESPACE = uuid.UUID("6f1c1f8e-53a4-4b8e-9d0e-3c1b7a2f4e10")


def _message_id(conversation_id: str, dedupe_key: Optional[str]) -> str:
    # Retries of a keyed send must produce the same logical id.
    if dedupe_key is None:
        return uuid.uuid4().hex
    return uuid.uuid5(_MESSAGE_ID_NAMESPACE, f"{conversation_id}|{dedupe_key}").hex


class MessageReplicator:
    """Writes each message into every participant's private message list."""

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        preview_max_length: int = 200,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._preview_max_length = preview_max_length

    async def ensure_conversation(self, conversation_id: str, sender_id: str) -> Conversation:
        conversation = await self._conversation_repo.get(sender_id, conversation_id)
        if conversation is None:
            participants, context_id = parse_conversation_id(conversation_id)
            if sender_id not in participants:
                raise InvalidParticipants(f"{sender_id} is not a participant of {conversation_id}")
            # Idempotent: replicas that already exist are left as they are.
            conversation = await self._conversation_repo.create(participants, context_id)
        elif sender_id not in conversation.participants:
            raise InvalidParticipants(f"{sender_id} is not a participant of {conversation_id}")
        return conversation

    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        type: str = MessageType.GENERAL.value,
        client_message_id: Optional[str] = None,
    ) -> Message:
        text = (content or "").strip()
        if not text:
            raise InvalidParticipants("Message content cannot be empty")
        conversation = await self.ensure_conversation(conversation_id, sender_id)
        dedupe_key = f"client:{sender_id}:{client_message_id}" if client_message_id else None
        message = Message(
            id=_message_id(conversation.id, dedupe_key),
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=text,
            type=type or MessageType.GENERAL.value,
            created_at=datetime.now(timezone.utc),
            status=DeliveryStatus.SENDING,
        )
        return await self._replicate(conversation, message, dedupe_key)

    async def replay(
        self,
        conversation: Conversation,
        sender_id: str,
        content: str,
        type: str,
        created_at: datetime,
        dedupe_key: str,
        read: bool = False,
    ) -> Message:
        """Re-send a historical message, keeping its original timestamp.

        A message that was already read is stored as READ by every other
        participant and does not count as unread.
        """
        readers = conversation.other_participants(sender_id) if read else []
        message = Message(
            id=_message_id(conversation.id, dedupe_key),
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=content,
            type=type or MessageType.GENERAL.value,
            created_at=created_at,
            status=DeliveryStatus.READ if read else DeliveryStatus.SENDING,
            read_by=readers,
        )
        return await self._replicate(conversation, message, dedupe_key)

    async def _replicate(self, conversation: Conversation, message: Message, dedupe_key: Optional[str]) -> Message:
        if message.status == DeliveryStatus.SENDING:
            message = message.model_copy(update={"status": DeliveryStatus.SENT})

        failure: Optional[PartialFanoutFailure] = None
        try:
            inserted: Dict[str, bool] = await fan_out(
                "send",
                {
                    owner: self._message_repo.save_replica(owner, message, dedupe_key)
                    for owner in conversation.participants
                },
            )
        except PartialFanoutFailure as exc:
            failure = exc
            inserted = exc.results

        written: List[str] = list(inserted)
        if written:
            counts_as_unread = message.status != DeliveryStatus.READ
            increment_for = [
                owner for owner, is_new in inserted.items()
                if is_new and owner != message.sender_id and counts_as_unread
            ]
            preview = LastMessage(
                content=message.content[: self._preview_max_length],
                sender_id=message.sender_id,
                created_at=message.created_at,
            )
            try:
                await self._conversation_repo.touch(conversation.id, written, preview, increment_for)
            except PartialFanoutFailure as exc:
                failure = failure or exc

        if failure is not None:
            logger.warning(
                "Message fan-out incomplete",
                extra={
                    "conversation_id": conversation.id,
                    "message_id": message.id,
                    "failed": sorted(failure.failed),
                },
            )
            failure.message = message.model_copy(update={"status": DeliveryStatus.FAILED})
            raise failure
        return message
