from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from jobchat.models.message import DeliveryStatus, MessageType


class LastMessage(BaseModel):

    content: str
    sender_id: str
    created_at: datetime


class Conversation(BaseModel):

    id: str
    owner_id: Optional[str] = None
    participants: List[str]
    job_id: Optional[str] = None
    last_message: Optional[LastMessage] = None
    unread_counters: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    def unread_for(self, participant: str) -> int:
        return max(self.unread_counters.get(participant, 0), 0)

    def other_participants(self, participant: str) -> List[str]:
        return [p for p in self.participants if p != participant]

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Conversation":
        return cls(
            id=doc["conversation_id"],
            owner_id=doc.get("owner_id"),
            participants=list(doc.get("participants") or []),
            job_id=doc.get("job_id"),
            last_message=doc.get("last_message"),
            unread_counters=dict(doc.get("unread_counters") or {}),
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    content: str
    type: str = MessageType.GENERAL.value
    created_at: datetime
    status: DeliveryStatus = DeliveryStatus.SENDING
    read_by: List[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Message":
        return cls(
            id=doc["message_id"],
            conversation_id=doc["conversation_id"],
            sender_id=doc["sender_id"],
            content=doc["content"],
            type=doc.get("type") or MessageType.GENERAL.value,
            created_at=doc["created_at"],
            status=DeliveryStatus(doc["status"]),
            read_by=list(doc.get("read_by") or []),
        )


class Counterpart(BaseModel):

    id: str
    name: str = "Unknown User"
    avatar: Optional[str] = None


class ConversationPreview(BaseModel):

    id: str
    job_id: Optional[str] = None
    title: str
    counterpart: Counterpart
    last_message: Optional[LastMessage] = None
    unread_count: int = 0
    updated_at: datetime


class ResolvedConversation(BaseModel):

    conversation: Conversation
    messages: List[Message]
    title: str
    counterpart: Counterpart
    next_cursor: Optional[str] = None


class SendMessageRequest(BaseModel):

    content: str = Field(max_length=5000)
    type: str = MessageType.GENERAL.value
    client_message_id: Optional[str] = Field(default=None, max_length=128)
