from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class LastMessageDocument(TypedDict):
    content: str
    sender_id: str
    created_at: datetime


class ConversationDocument(TypedDict, total=False):
    _id: str
    # canonical id, identical across every participant's replica
    conversation_id: str
    # participant whose private view this replica is
    owner_id: str
    participants: List[str]
    job_id: Optional[str]
    last_message: Optional[LastMessageDocument]
    # per-user unread counters (user_id -> count)
    unread_counters: Dict[str, int]
    created_at: datetime
    updated_at: datetime
