import logging
from typing import List, Optional

from chatsync.errors import DecodeError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository, decode_message
from chatsync.schemas.message import VOICE_MESSAGE_TEXT, Message, MessageAck, MessageType

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class ChatService:

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo

    async def _check_participants(self, conversation_id: str, sender_id: str, receiver_id: str) -> None:
        if sender_id == receiver_id:
            raise ValueError("Sender and receiver must differ")
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None:
            raise ValueError("Conversation not found")
        if set(convo.participants) != {sender_id, receiver_id}:
            raise ValueError("Sender and receiver must be the conversation's participants")

    async def send_message(self, conversation_id: str, sender_id: str, receiver_id: str, text: str) -> MessageAck:
        if not text or not text.strip():
            raise ValueError("Message content cannot be empty")
        await self._check_participants(conversation_id, sender_id, receiver_id)
        saved = await self._message_repo.save_message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            text=text.strip(),
        )
        await self._conversation_repo.update_on_new_message(
            conversation_id, text.strip()[:PREVIEW_LENGTH], sender_id, receiver_id
        )
        return MessageAck(message_id=saved.id, conversation_id=conversation_id)

    async def send_voice_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        audio_url: str,
        duration: float,
    ) -> MessageAck:
        if not audio_url:
            raise ValueError("Voice message needs an audio location")
        await self._check_participants(conversation_id, sender_id, receiver_id)
        saved = await self._message_repo.save_message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            text=VOICE_MESSAGE_TEXT,
            message_type=MessageType.AUDIO,
            audio_url=audio_url,
            audio_duration=duration,
        )
        await self._conversation_repo.update_on_new_message(conversation_id, VOICE_MESSAGE_TEXT, sender_id, receiver_id)
        return MessageAck(message_id=saved.id, conversation_id=conversation_id)

    async def ensure_participant(self, conversation_id: str, user_id: str) -> None:
        """Raise ``LookupError`` unless ``user_id`` takes part in the conversation.

        Outsiders get the same answer as for a missing conversation.
        """
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None or user_id not in convo.participants:
            raise LookupError("Conversation not found")

    async def get_history(self, conversation_id: str, user_id: str, limit: Optional[int] = None) -> List[Message]:
        await self.ensure_participant(conversation_id, user_id)
        messages = []
        for doc in await self._message_repo.get_messages_by_conversation(conversation_id, limit=limit):
            try:
                messages.append(decode_message(doc))
            except DecodeError as exc:
                logger.warning("Skipping undecodable message: %s", exc)
        return messages
