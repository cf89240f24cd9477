from datetime import datetime
from typing import Literal, Optional, TypedDict


MessageKind = Literal["text", "audio"]


class MessageDocument(TypedDict, total=False):
    text: str
    sender_id: str
    receiver_id: str
    timestamp: datetime
    message_type: MessageKind
    # audio only
    audio_url: Optional[str]
    audio_duration: Optional[float]
