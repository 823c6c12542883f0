from datetime import datetime
from typing import Optional, TypedDict


class LegacyMessageDocument(TypedDict, total=False):
    _id: str
    sender_id: str
    receiver_id: str
    job_id: Optional[str]
    content: str
    type: str
    is_read: bool
    created_at: datetime
