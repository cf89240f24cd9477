from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from chatsync.errors import DecodeError
from chatsync.models.message import MessageDocument
from chatsync.schemas.message import Message, MessageType
from chatsync.utils.gateway import DataGateway, Document, Query, Subscription


def decode_message(doc: Document) -> Message:
    try:
        return Message.model_validate({**doc.data, "id": doc.id})
    except ValidationError as exc:
        raise DecodeError(doc.path, str(exc)) from exc


class MessageRepository:

    def __init__(self, gateway: DataGateway) -> None:
        self._gateway = gateway

    def _collection(self, conversation_id: str) -> str:
        return f"chats/{conversation_id}/messages"

    def _history(self, conversation_id: str, limit: Optional[int] = None) -> Query:
        return Query(self._collection(conversation_id), order_by="timestamp", limit=limit)

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        text: str,
        message_type: MessageType = MessageType.TEXT,
        audio_url: Optional[str] = None,
        audio_duration: Optional[float] = None,
    ) -> Message:
        doc: MessageDocument = {
            "text": text,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "timestamp": datetime.now(timezone.utc),
            "message_type": message_type.value,
        }
        if message_type == MessageType.AUDIO:
            doc["audio_url"] = audio_url
            doc["audio_duration"] = audio_duration
        # validate before writing so a bad message never reaches the store
        message = Message.model_validate({**doc, "id": "pending"})
        message_id = await self._gateway.add_document(self._collection(conversation_id), dict(doc))
        return message.model_copy(update={"id": message_id})

    async def get_messages_by_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[Document]:
        return await self._gateway.query(self._history(conversation_id, limit))

    def watch_conversation(self, conversation_id: str) -> Subscription:
        return self._gateway.subscribe(self._history(conversation_id))
