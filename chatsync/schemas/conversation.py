from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, NonNegativeInt, field_validator

from chatsync.schemas.user import User, UserPublic


class Conversation(BaseModel):
    """A one-to-one chat as stored, with denormalized last message."""

    id: str
    participants: List[str]
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_sender_id: Optional[str] = None
    created_at: datetime
    unread_counters: Dict[str, NonNegativeInt] = Field(default_factory=dict)

    @field_validator("participants")
    @classmethod
    def _exactly_two(cls, value: List[str]) -> List[str]:
        if len(value) != 2 or value[0] == value[1]:
            raise ValueError("a conversation has exactly two distinct participants")
        return value

    def unread_for(self, user_id: str) -> int:
        return self.unread_counters.get(user_id, 0)

    def has_unread(self, user_id: str) -> bool:
        return self.unread_for(user_id) > 0

    def other_participant(self, user_id: str) -> Optional[str]:
        return next((p for p in self.participants if p != user_id), None)


class ConversationSummary(BaseModel):
    """A conversation together with the resolved other participant, if found."""

    conversation: Conversation
    other_user: Optional[User] = None

    @property
    def id(self) -> str:
        return self.conversation.id


class ConversationSummaryOut(BaseModel):

    id: str
    participants: List[str]
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_sender_id: Optional[str] = None
    unread_count: int = 0
    other_user: Optional[UserPublic] = None

    @classmethod
    def from_summary(cls, summary: ConversationSummary, user_id: str) -> "ConversationSummaryOut":
        convo = summary.conversation
        other = summary.other_user
        return cls(
            id=convo.id,
            participants=convo.participants,
            last_message=convo.last_message,
            last_message_at=convo.last_message_at,
            last_message_sender_id=convo.last_message_sender_id,
            unread_count=convo.unread_for(user_id),
            other_user=UserPublic(**other.model_dump(include={"id", "name", "email", "photo_url"})) if other else None,
        )


class OpenConversationRequest(BaseModel):

    other_user_id: str = Field(min_length=1)
