from datetime import datetime
from enum import Enum
from typing import List, Optional, TypedDict


class DeliveryStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]


STATUS_RANK = {
    DeliveryStatus.SENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.READ: 3,
    # nothing advances past a failed send
    DeliveryStatus.FAILED: 99,
}


class MessageType(str, Enum):
    GENERAL = "general"
    APPLICATION = "application"
    JOB_OFFER = "job_offer"
    SYSTEM = "system"


class MessageDocument(TypedDict, total=False):
    _id: str
    # logical id shared by every replica of the same send
    message_id: str
    conversation_id: str
    owner_id: str
    sender_id: str
    content: str
    type: str
    created_at: datetime
    # delivery states
    status: str
    status_rank: int
    read_by: List[str]
    # client or migration dedupe key
    dedupe_key: Optional[str]
