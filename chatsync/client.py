import logging
from typing import Optional

from chatsync.context import ClientContext
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.services.chat_directory import ChatDirectory
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_screen import ConversationScreen
from chatsync.services.notification_dispatcher import NotificationDispatcher
from chatsync.services.read_state import ReadStateReconciler
from chatsync.services.session_service import SessionService, SessionState
from chatsync.services.user_service import UserService
from chatsync.utils.mongo_gateway import MongoGateway

logger = logging.getLogger(__name__)


class ChatClient:
    """Wires the sync components around one ``ClientContext``.

    The conversation list follows the session: it starts listening once the
    session is authenticated and stops, closing any open conversation, as
    soon as it is not.
    """

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        conversation_repo = ConversationRepository(context.gateway)
        message_repo = MessageRepository(context.gateway)
        user_repo = UserRepository(context.gateway)

        self.users = UserService(user_repo)
        self.dispatcher = NotificationDispatcher(
            context.active_view,
            context.notifications,
            user_repo,
            fallback_title=context.settings.notification_fallback_title,
        )
        self.directory = ChatDirectory(conversation_repo, user_repo, self.dispatcher)
        self.reconciler = ReadStateReconciler(conversation_repo, context.identity)
        self.chat = ChatService(message_repo, conversation_repo)
        self.screen = ConversationScreen(self.directory, message_repo, self.reconciler, context.active_view)
        self.session = SessionService(
            context.identity,
            context.storage,
            self.users,
            context.verifier,
            context.notifications,
        )
        self.session.add_listener(self._on_session_state)

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session.is_authenticated else None

    async def start(self) -> SessionState:
        if isinstance(self.context.gateway, MongoGateway):
            await self.context.gateway.ensure_indexes()
        return await self.session.initialize()

    async def shutdown(self) -> None:
        await self.screen.close()
        self.directory.stop()
        self.session.close()
        await self.context.gateway.close()

    def _on_session_state(self, state: SessionState, user_id: Optional[str]) -> None:
        if state == SessionState.AUTHENTICATED and user_id is not None:
            self.directory.start(user_id)
        elif state != SessionState.AUTHENTICATED:
            self.directory.stop()
            self.screen.dismiss()
