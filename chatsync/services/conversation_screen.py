import asyncio
import logging
from typing import List, Optional

from chatsync.errors import BestEffortResult, DecodeError
from chatsync.repositories.message_repository import MessageRepository, decode_message
from chatsync.schemas.message import Message
from chatsync.services.chat_directory import ChatDirectory
from chatsync.services.read_state import ReadStateReconciler
from chatsync.utils.active_view import ActiveViewTracker
from chatsync.utils.gateway import Subscription

logger = logging.getLogger(__name__)


class ConversationScreen:
    """The foreground conversation: active-view marking, read state and live history.

    Opening marks the conversation active and read as soon as its id is
    known, before history loads, so an alert arriving while history is
    still loading is suppressed. Closing marks it read again to cover
    messages that landed while it was open.
    """

    def __init__(
        self,
        directory: ChatDirectory,
        message_repo: MessageRepository,
        reconciler: ReadStateReconciler,
        active_view: ActiveViewTracker,
    ) -> None:
        self._directory = directory
        self._message_repo = message_repo
        self._reconciler = reconciler
        self._active_view = active_view
        self.conversation_id: Optional[str] = None
        self._user_id: Optional[str] = None
        self.messages: List[Message] = []
        self.error_message: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._feed: Optional[asyncio.Task] = None

    async def open(self, current_user_id: str, other_user_id: str) -> str:
        if self.conversation_id is not None:
            await self.close()
        conversation_id = await self._directory.get_or_create_chat(current_user_id, other_user_id)
        # An overlapping open may have installed its conversation meanwhile.
        while self.conversation_id is not None:
            await self.close()
        self.conversation_id = conversation_id
        self._user_id = current_user_id
        self._active_view.set_active(conversation_id)
        await self._reconciler.mark_read(conversation_id, current_user_id)
        if self.conversation_id != conversation_id:
            return conversation_id
        self._subscription = self._message_repo.watch_conversation(conversation_id)
        self._feed = asyncio.create_task(self._consume(self._subscription))
        return conversation_id

    async def close(self) -> Optional[BestEffortResult]:
        conversation_id, user_id = self.conversation_id, self._user_id
        if conversation_id is None:
            return None
        self._stop_feed()
        result = await self._reconciler.mark_read(conversation_id, user_id)
        if self._active_view.is_active(conversation_id):
            self._active_view.clear()
        return result

    def dismiss(self) -> None:
        """Drop the screen without touching read state, e.g. after logout."""
        conversation_id = self.conversation_id
        if conversation_id is None:
            return
        self._stop_feed()
        if self._active_view.is_active(conversation_id):
            self._active_view.clear()

    def _stop_feed(self) -> None:
        self.conversation_id = None
        self._user_id = None
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._feed is not None:
            self._feed.cancel()
            self._feed = None
        self.messages = []

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            if subscription.cancelled:
                return
            if event.error is not None:
                self.error_message = f"Error fetching messages: {event.error}"
                continue
            messages = []
            for doc in event.documents:
                try:
                    messages.append(decode_message(doc))
                except DecodeError as exc:
                    logger.warning("Skipping undecodable message: %s", exc)
            self.messages = messages
