import logging
from typing import Iterable, List, Optional, Set

from chatsync.errors import ChatSyncError
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.conversation import Conversation
from chatsync.utils.active_view import ActiveViewTracker
from chatsync.utils.notifications import LocalNotification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Decides, per snapshot, which conversations deserve a local alert.

    A conversation qualifies when the current user has unread messages in
    it, it was already present in an earlier snapshot and it is not the one
    on screen. Each qualifying conversation yields one alert per snapshot,
    carrying the latest message text. Nothing is remembered across
    snapshots beyond which ids were seen, so an unread conversation that
    stays unread alerts again on the next snapshot.
    """

    def __init__(
        self,
        active_view: ActiveViewTracker,
        sink,
        user_repo: UserRepository,
        fallback_title: str = "Someone",
    ) -> None:
        self._active_view = active_view
        self._sink = sink
        self._user_repo = user_repo
        self._fallback_title = fallback_title
        self._known: Set[str] = set()

    def evaluate(self, current_user_id: str, conversations: Iterable[Conversation]) -> List[Conversation]:
        due: List[Conversation] = []
        for convo in conversations:
            seen_before = convo.id in self._known
            self._known.add(convo.id)
            if not convo.has_unread(current_user_id) or not seen_before:
                continue
            if self._active_view.is_active(convo.id):
                logger.info("Notification suppressed, conversation %s is on screen", convo.id)
                continue
            if convo.last_message is None or convo.other_participant(current_user_id) is None:
                continue
            due.append(convo)
        return due

    async def _title_for(self, user_id: Optional[str]) -> str:
        if user_id is None:
            return self._fallback_title
        try:
            user = await self._user_repo.get_user_by_id(user_id)
        except ChatSyncError as exc:
            logger.warning("Sender lookup for %s failed: %s", user_id, exc)
            return self._fallback_title
        if user is None:
            return self._fallback_title
        return user.display_name or self._fallback_title

    async def notify(self, current_user_id: str, conversation: Conversation) -> bool:
        title = await self._title_for(conversation.other_participant(current_user_id))
        notification = LocalNotification(
            title=title,
            body=conversation.last_message or "",
            payload={"conversation_id": conversation.id},
        )
        try:
            await self._sink.show(notification)
        except Exception as exc:
            logger.warning("Notification for %s not shown: %s", conversation.id, exc)
            return False
        logger.info("Notification shown for %s from %s", conversation.id, title)
        return True

    async def dispatch(self, current_user_id: str, conversations: Iterable[Conversation]) -> int:
        shown = 0
        for convo in self.evaluate(current_user_id, conversations):
            if await self.notify(current_user_id, convo):
                shown += 1
        return shown

    def reset(self) -> None:
        self._known.clear()
