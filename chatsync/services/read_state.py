import logging
from typing import Optional

from chatsync.errors import BestEffortResult, ChatSyncError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.utils.identity import IdentityProvider

logger = logging.getLogger(__name__)


class ReadStateReconciler:
    """Zeroes the signed-in user's unread counter on a conversation.

    Best-effort: a failed write is logged and reported in the result, never
    raised and never retried. The next snapshot simply shows the stale count.
    """

    def __init__(self, conversation_repo: ConversationRepository, identity: IdentityProvider) -> None:
        self._conversation_repo = conversation_repo
        self._identity = identity

    async def mark_read(self, conversation_id: str, user_id: Optional[str] = None) -> BestEffortResult:
        if user_id is None:
            current = self._identity.current_user()
            if current is None:
                return BestEffortResult(False, "Not signed in")
            user_id = current.id
        try:
            await self._conversation_repo.reset_unread(conversation_id, user_id)
        except ChatSyncError as exc:
            logger.warning("Could not mark %s read: %s", conversation_id, exc)
            return BestEffortResult(False, f"Could not mark chat as read: {exc}")
        logger.debug("Marked %s read for %s", conversation_id, user_id)
        return BestEffortResult(True)
