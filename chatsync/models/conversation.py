from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    participants: List[str]
    last_message: Optional[str]
    last_message_at: Optional[datetime]
    last_message_sender_id: Optional[str]
    created_at: datetime
    # per-user unread counters (user_id -> count)
    unread_counters: Dict[str, int]
