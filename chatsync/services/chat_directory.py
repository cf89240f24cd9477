import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Set

from chatsync.errors import ChatSyncError, DecodeError
from chatsync.repositories.conversation_repository import ConversationRepository, decode_conversation
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.conversation import Conversation, ConversationSummary
from chatsync.schemas.user import User
from chatsync.services.notification_dispatcher import NotificationDispatcher
from chatsync.utils.gateway import SnapshotEvent, Subscription

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _recency(summary: ConversationSummary):
    ts = summary.conversation.last_message_at
    if ts is not None and ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (ts is not None, ts or _EPOCH)


class ChatDirectory:
    """Live, ordered list of the signed-in user's conversations.

    Every snapshot rebuilds the whole list. The other participant of each
    conversation is looked up again per snapshot; those lookups run in a
    task so a slow lookup never holds up the next snapshot, and a result
    is only applied when no newer snapshot has been applied before it.
    """

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._dispatcher = dispatcher
        self.summaries: List[ConversationSummary] = []
        self.error_message: Optional[str] = None
        self.is_loading = False
        self._current_user_id: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._generation = 0
        self._applied_version = 0
        self._has_data = False
        self._watchers: Set[asyncio.Queue] = set()

    @property
    def current_user_id(self) -> Optional[str]:
        return self._current_user_id

    @property
    def is_listening(self) -> bool:
        return self._subscription is not None

    def start(self, current_user_id: str) -> None:
        if self._subscription is not None:
            if self._current_user_id == current_user_id:
                return
            self.stop()
        self._generation += 1
        self._current_user_id = current_user_id
        self._applied_version = 0
        self._has_data = False
        self.error_message = None
        self.is_loading = True
        self._subscription = self._conversation_repo.watch_for_user(current_user_id)
        self._consumer = asyncio.create_task(self._consume(self._subscription, self._generation))
        logger.info("Listening to conversations of %s", current_user_id)

    def stop(self) -> None:
        """Cancel the live subscription and forget everything. Safe to repeat."""
        if self._subscription is None and self._consumer is None and not self._pending:
            return
        self._generation += 1
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self._dispatcher.reset()
        self._current_user_id = None
        self.is_loading = False
        self.error_message = None
        self._apply([])
        logger.info("Stopped listening to conversations")

    async def get_or_create_chat(self, current_user_id: str, other_user_id: str) -> str:
        return await self._conversation_repo.get_or_create_one_to_one(current_user_id, other_user_id)

    async def updates(self) -> AsyncIterator[List[ConversationSummary]]:
        """Yield the current list, then the latest list applied since the last yield.

        A slow reader never sees a backlog: lists it had no time to take are
        replaced by newer ones.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._watchers.add(queue)
        try:
            yield list(self.summaries)
            while True:
                yield await queue.get()
        finally:
            self._watchers.discard(queue)

    async def _consume(self, subscription: Subscription, generation: int) -> None:
        async for event in subscription:
            if generation != self._generation:
                return
            self._handle_event(event, generation)

    def _handle_event(self, event: SnapshotEvent, generation: int) -> None:
        user_id = self._current_user_id
        if user_id is None:
            return
        if event.error is not None:
            self.error_message = f"Error loading chats: {event.error}"
            self.is_loading = False
            if not self._has_data:
                self._apply([])
            return
        self._has_data = True
        conversations = self._decode(event)
        for convo in self._dispatcher.evaluate(user_id, conversations):
            self._spawn(self._dispatcher.notify(user_id, convo))
        self._spawn(self._resolve(event.version, generation, user_id, conversations))

    def _decode(self, event: SnapshotEvent) -> List[Conversation]:
        conversations = []
        for doc in event.documents:
            try:
                conversations.append(decode_conversation(doc))
            except DecodeError as exc:
                logger.warning("Skipping undecodable conversation: %s", exc)
        return conversations

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _lookup(self, user_id: Optional[str]) -> Optional[User]:
        if user_id is None:
            return None
        try:
            return await self._user_repo.get_user_by_id(user_id)
        except ChatSyncError as exc:
            logger.warning("Could not resolve participant %s: %s", user_id, exc)
            return None

    async def _resolve(self, version: int, generation: int, user_id: str, conversations: List[Conversation]) -> None:
        users = await asyncio.gather(*(self._lookup(c.other_participant(user_id)) for c in conversations))
        if generation != self._generation:
            return
        if version < self._applied_version:
            logger.debug("Dropping resolution for snapshot %d, %d already applied", version, self._applied_version)
            return
        self._applied_version = version
        summaries = [ConversationSummary(conversation=c, other_user=u) for c, u in zip(conversations, users)]
        summaries.sort(key=_recency, reverse=True)
        self._apply(summaries)
        self.is_loading = False

    def _apply(self, summaries: List[ConversationSummary]) -> None:
        self.summaries = summaries
        self._publish(summaries)

    def _publish(self, summaries: List[ConversationSummary]) -> None:
        for queue in list(self._watchers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(list(summaries))
