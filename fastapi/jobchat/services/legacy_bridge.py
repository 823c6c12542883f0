import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from jobchat.errors import InvalidParticipants
from jobchat.models.legacy_message import LegacyMessageDocument
from jobchat.repositories.legacy_message_repository import LegacyMessageRepository
from jobchat.repositories.message_repository import MessageRepository
from jobchat.schemas.chat import Conversation
from jobchat.services.message_replicator import MessageReplicator
from jobchat.utils.conversation_ids import canonical_conversation_id, normalize_participants


logger = logging.getLogger(__name__)


def legacy_dedupe_key(record: LegacyMessageDocument) -> str:
    return f"legacy:{record['sender_id']}:{record['_id']}"


class LegacyBridge:
    """Moves flat sender/receiver messages into the conversation shape.

    Legacy records carry a single receiver instead of a participant set, so
    they cannot be looked up by conversation id. This class is the only place
    that reads them; everything it hands back is in the conversation shape.
    Migration is additive and can be re-run: records already present in every
    replica are skipped.
    """

    def __init__(
        self,
        legacy_repo: LegacyMessageRepository,
        message_repo: MessageRepository,
        replicator: MessageReplicator,
    ) -> None:
        self._legacy_repo = legacy_repo
        self._message_repo = message_repo
        self._replicator = replicator

    async def has_legacy_history(self, user_a: str, user_b: str) -> bool:
        return await self._legacy_repo.exists_between(user_a, user_b)

    async def locate(self, caller_id: str, legacy_id: str) -> Optional[Tuple[str, List[str]]]:
        """Map a legacy message id seen by ``caller_id`` to (conversation id, participants)."""
        record = await self._legacy_repo.get_for_user(caller_id, legacy_id)
        if record is None:
            return None
        other = record["receiver_id"] if record["sender_id"] == caller_id else record["sender_id"]
        try:
            participants = normalize_participants([caller_id, other])
        except InvalidParticipants:
            logger.warning("Legacy message has no usable counterpart", extra={"legacy_id": record["_id"]})
            return None
        return canonical_conversation_id(participants, record.get("job_id")), participants

    async def migrate(self, conversation_id: str, participants: Iterable[str]) -> int:
        user_a, user_b = normalize_participants(participants)
        records = await self._legacy_repo.list_between(user_a, user_b)
        if not records:
            return 0

        conversation = await self._replicator.ensure_conversation(conversation_id, user_a)
        if sorted(conversation.participants) != [user_a, user_b]:
            raise InvalidParticipants(f"{conversation_id} is not a conversation between {user_a} and {user_b}")

        migrated = 0
        # Sequential so previews and ordering follow the original timeline.
        for record in records:
            content = (record.get("content") or "").strip()
            if not content:
                logger.warning("Skipping empty legacy message", extra={"legacy_id": record["_id"]})
                continue
            key = legacy_dedupe_key(record)
            if await self._already_migrated(conversation, record, key, content):
                continue
            await self._replicator.replay(
                conversation,
                sender_id=record["sender_id"],
                content=content,
                type=record.get("type") or "general",
                created_at=record["created_at"],
                dedupe_key=key,
                read=bool(record.get("is_read")),
            )
            migrated += 1

        logger.info(
            "Legacy messages migrated",
            extra={"conversation_id": conversation.id, "migrated": migrated, "legacy_total": len(records)},
        )
        return migrated

    async def _already_migrated(
        self, conversation: Conversation, record: LegacyMessageDocument, key: str, content: str
    ) -> bool:
        present = await asyncio.gather(
            *(
                self._message_repo.contains_equivalent(
                    owner, conversation.id, key, record["sender_id"], content, record["created_at"]
                )
                for owner in conversation.participants
            )
        )
        return all(present)
