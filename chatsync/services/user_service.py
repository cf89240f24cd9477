import logging
from typing import List, Optional

from chatsync.errors import BestEffortResult, ChatSyncError
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import IdentityUser, User

logger = logging.getLogger(__name__)


class UserService:
    """Profile documents for signed-in users and the list of people to chat with."""

    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository

    async def sync_profile(self, identity: IdentityUser) -> BestEffortResult:
        """
        Create the profile on first sign-in, refresh name, email and avatar afterwards.
        """
        try:
            await self.user_repository.upsert_profile(identity)
        except ChatSyncError as exc:
            logger.warning("Could not save profile for %s: %s", identity.id, exc)
            return BestEffortResult(False, str(exc))
        return BestEffortResult(True)

    async def mark_verified(self, user_id: str) -> BestEffortResult:
        try:
            await self.user_repository.mark_verified(user_id)
        except ChatSyncError as exc:
            logger.warning("Could not flag %s as verified: %s", user_id, exc)
            return BestEffortResult(False, str(exc))
        return BestEffortResult(True)

    async def delete_profile(self, user_id: str) -> BestEffortResult:
        try:
            await self.user_repository.delete_user(user_id)
        except ChatSyncError as exc:
            logger.warning("Could not delete profile for %s: %s", user_id, exc)
            return BestEffortResult(False, str(exc))
        logger.info("Deleted profile for %s", user_id)
        return BestEffortResult(True)

    async def list_contacts(self, exclude_user_id: Optional[str]) -> List[User]:
        return await self.user_repository.list_users(exclude_user_id=exclude_user_id)
