from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field, PositiveFloat, model_validator

VOICE_MESSAGE_TEXT = "🎤 Voice message"


class MessageType(StrEnum):
    TEXT = "text"
    AUDIO = "audio"


class Message(BaseModel):

    id: str
    text: str
    sender_id: str
    receiver_id: str
    timestamp: datetime
    message_type: MessageType = MessageType.TEXT
    audio_url: Optional[str] = None
    audio_duration: Optional[float] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Message":
        if self.sender_id == self.receiver_id:
            raise ValueError("sender and receiver must differ")
        if self.message_type == MessageType.AUDIO:
            if not self.audio_url or self.audio_duration is None:
                raise ValueError("audio messages need a location and a duration")
        elif self.audio_url is not None or self.audio_duration is not None:
            raise ValueError("only audio messages carry audio fields")
        return self


class SendMessageRequest(BaseModel):

    conversation_id: str
    receiver_id: str
    text: str = Field(min_length=1, max_length=4000)


class SendVoiceMessageRequest(BaseModel):

    conversation_id: str
    receiver_id: str
    audio_url: str = Field(min_length=1)
    duration: PositiveFloat


class MessageAck(BaseModel):

    message_id: str
    conversation_id: str
