from typing import Iterable, List

from jobchat.errors import NotFound
from jobchat.models.message import DeliveryStatus
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.repositories.message_repository import MessageRepository
from jobchat.schemas.chat import Message


class DeliveryTracker:
    """Per-recipient delivery state: SENDING < SENT < DELIVERED < READ, FAILED terminal.

    Transitions only ever move forward. Every write targets the acting
    participant's own replica and skips the messages that participant sent;
    what a sender sees is derived by ``effective_statuses``.
    """

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo

    async def mark_delivered(self, participant: str, conversation_id: str, message_id: str) -> bool:
        modified = await self._message_repo.advance_status(
            participant, conversation_id, DeliveryStatus.DELIVERED, [message_id]
        )
        return await self._changed_or_missing(modified, participant, conversation_id, message_id)

    async def mark_read(self, participant: str, conversation_id: str, message_id: str) -> bool:
        modified = await self._message_repo.advance_status(
            participant, conversation_id, DeliveryStatus.READ, [message_id], add_reader=participant
        )
        return await self._changed_or_missing(modified, participant, conversation_id, message_id)

    async def mark_failed(self, participant: str, conversation_id: str, message_id: str) -> bool:
        modified = await self._message_repo.mark_failed(participant, conversation_id, message_id)
        return await self._changed_or_missing(int(modified), participant, conversation_id, message_id)

    async def mark_all_read(self, participant: str, conversation_id: str, participants: Iterable[str]) -> int:
        updated = await self._message_repo.advance_status(
            participant, conversation_id, DeliveryStatus.READ, add_reader=participant
        )
        await self._conversation_repo.reset_unread(participant, conversation_id, participants)
        return updated

    async def mark_fetched(self, participant: str, conversation_id: str, messages: List[Message]) -> List[Message]:
        """Mark incoming messages the participant just loaded as DELIVERED."""
        pending = {
            m.id for m in messages
            if m.sender_id != participant and m.status.rank < DeliveryStatus.DELIVERED.rank
        }
        if not pending:
            return messages
        await self._message_repo.advance_status(participant, conversation_id, DeliveryStatus.DELIVERED, pending)
        return [
            m.model_copy(update={"status": DeliveryStatus.DELIVERED}) if m.id in pending else m
            for m in messages
        ]

    async def effective_statuses(self, participant: str, conversation_id: str, messages: List[Message]) -> List[Message]:
        own = [m.id for m in messages if m.sender_id == participant and m.status != DeliveryStatus.FAILED]
        remote = await self._message_repo.statuses_in_other_replicas(participant, conversation_id, own)
        result = []
        for m in messages:
            seen = remote.get(m.id)
            if seen is not None and seen[0] != DeliveryStatus.FAILED and seen[0].rank > m.status.rank:
                m = m.model_copy(update={"status": seen[0], "read_by": sorted(set(m.read_by) | seen[1])})
            result.append(m)
        return result

    async def _changed_or_missing(self, modified: int, participant: str, conversation_id: str, message_id: str) -> bool:
        if modified:
            return True
        if not await self._message_repo.exists(participant, conversation_id, message_id):
            raise NotFound(f"Message {message_id} not found in {participant}'s replica of {conversation_id}")
        return False
