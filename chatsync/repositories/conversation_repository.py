import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from chatsync.errors import DecodeError
from chatsync.models.conversation import ConversationDocument
from chatsync.schemas.conversation import Conversation
from chatsync.utils.gateway import DataGateway, Document, Increment, Query, Subscription

logger = logging.getLogger(__name__)

CHATS = "chats"


def decode_conversation(doc: Document) -> Conversation:
    try:
        return Conversation.model_validate({**doc.data, "id": doc.id})
    except ValidationError as exc:
        raise DecodeError(doc.path, str(exc)) from exc


class ConversationRepository:

    def __init__(self, gateway: DataGateway) -> None:
        self._gateway = gateway

    def _path(self, conversation_id: str) -> str:
        return f"{CHATS}/{conversation_id}"

    def _for_user(self, user_id: str, ordered: bool = True) -> Query:
        if not ordered:
            return Query(CHATS, array_contains=("participants", user_id))
        return Query(CHATS, array_contains=("participants", user_id), order_by="last_message_at", descending=True)

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        doc = await self._gateway.get_document(self._path(conversation_id))
        if doc is None:
            return None
        return decode_conversation(doc)

    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> str:
        """Return the id of the chat between ``user_a`` and ``user_b``, creating it if needed.

        This is a scan followed by an insert, not an atomic upsert: two first
        contacts racing for the same pair can both miss and create two chats.
        """
        if user_a == user_b:
            raise ValueError("Cannot open a conversation with yourself")
        for doc in await self._gateway.query(self._for_user(user_a, ordered=False)):
            try:
                convo = decode_conversation(doc)
            except DecodeError as exc:
                logger.warning("Skipping undecodable conversation: %s", exc)
                continue
            if user_b in convo.participants:
                return convo.id
        doc: ConversationDocument = {
            "participants": sorted([user_a, user_b]),
            "last_message": None,
            "last_message_at": None,
            "last_message_sender_id": None,
            "created_at": datetime.now(timezone.utc),
            "unread_counters": {user_a: 0, user_b: 0},
        }
        conversation_id = await self._gateway.add_document(CHATS, dict(doc))
        logger.info("Created conversation %s", conversation_id)
        return conversation_id

    async def update_on_new_message(self, conversation_id: str, preview: str, sender_id: str, receiver_id: str) -> None:
        fields: Dict[str, Any] = {
            "last_message": preview,
            "last_message_at": datetime.now(timezone.utc),
            "last_message_sender_id": sender_id,
            f"unread_counters.{receiver_id}": Increment(1),
        }
        await self._gateway.update_fields(self._path(conversation_id), fields)

    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        await self._gateway.update_fields(self._path(conversation_id), {f"unread_counters.{user_id}": 0})

    def watch_for_user(self, user_id: str) -> Subscription:
        return self._gateway.subscribe(self._for_user(user_id))
