import logging
from enum import StrEnum
from typing import Callable, List, Optional

from chatsync.errors import AuthInvalidError, BackendError, ChatSyncError, SignInError, TransientNetworkError
from chatsync.schemas.user import IdentityUser
from chatsync.services.user_service import UserService
from chatsync.utils.identity import IdentityProvider
from chatsync.utils.local_storage import LocalStorage
from chatsync.utils.notifications import LocalNotification
from chatsync.utils.verification import CodeVerifier

logger = logging.getLogger(__name__)

AUTH_STATE_KEY = "isAuthenticated"


class SessionState(StrEnum):
    INITIALIZING = "initializing"
    AUTHENTICATING = "authenticating"
    NEEDS_VERIFICATION = "needs-secondary-verification"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


StateListener = Callable[[SessionState, Optional[str]], None]


class SessionService:
    """Session validation state machine.

    ``initializing`` and ``authenticating`` are transient. A liveness
    failure that invalidates the account forces a logout and deletes the
    remote profile; an unreachable or misbehaving provider never does, the
    cached flag decides instead.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        storage: LocalStorage,
        user_service: UserService,
        verifier: CodeVerifier,
        notifications,
    ) -> None:
        self._identity = identity
        self._storage = storage
        self._user_service = user_service
        self._verifier = verifier
        self._notifications = notifications
        self.state = SessionState.INITIALIZING
        self.error_message: Optional[str] = None
        self._listeners: List[StateListener] = []
        self._remove_auth_listener: Optional[Callable[[], None]] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def user_id(self) -> Optional[str]:
        user = self._identity.current_user()
        return user.id if user else None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        logger.info("Session %s -> %s", self.state, state)
        self.state = state
        user_id = self.user_id
        for listener in list(self._listeners):
            listener(state, user_id)

    def _persist(self, authenticated: bool) -> None:
        self._storage.set_bool(AUTH_STATE_KEY, authenticated)

    async def initialize(self) -> SessionState:
        if self._remove_auth_listener is None:
            self._remove_auth_listener = self._identity.on_auth_state_change(self._on_auth_state_change)
        user = self._identity.current_user()
        if user is None:
            self._persist(False)
            self._set_state(SessionState.UNAUTHENTICATED)
            return self.state
        try:
            await self._identity.force_token_refresh()
        except AuthInvalidError as exc:
            await self._force_logout(user.id, exc)
            return self.state
        except (TransientNetworkError, BackendError) as exc:
            logger.warning("Session check deferred, keeping cached state: %s", exc)
            cached = self._storage.get_bool(AUTH_STATE_KEY)
            self._set_state(SessionState.AUTHENTICATED if cached else SessionState.UNAUTHENTICATED)
            return self.state
        if self._storage.get_bool(AUTH_STATE_KEY):
            self._set_state(SessionState.AUTHENTICATED)
        else:
            await self._request_verification(user)
        return self.state

    async def sign_in(self, credential: str) -> SessionState:
        if self.state not in (SessionState.UNAUTHENTICATED, SessionState.NEEDS_VERIFICATION):
            raise ValueError(f"Cannot sign in while {self.state}")
        self.error_message = None
        self._set_state(SessionState.AUTHENTICATING)
        try:
            user = await self._identity.sign_in(credential)
        except (SignInError, TransientNetworkError, BackendError) as exc:
            self.error_message = f"Sign in failed: {exc}"
            self._set_state(SessionState.UNAUTHENTICATED)
            return self.state
        # verification is required on every fresh login
        self._persist(False)
        await self._user_service.sync_profile(user)
        await self._request_verification(user)
        return self.state

    async def _request_verification(self, user: IdentityUser) -> None:
        code = self._verifier.issue(user.id)
        try:
            await self._notifications.show(LocalNotification(
                title="Verification code",
                body=f"Your sign-in code is {code}",
                payload={"kind": "verification"},
            ))
        except Exception as exc:
            logger.warning("Verification code for %s not delivered: %s", user.id, exc)
        self._set_state(SessionState.NEEDS_VERIFICATION)

    async def resend_code(self) -> None:
        user = self._identity.current_user()
        if self.state != SessionState.NEEDS_VERIFICATION or user is None:
            raise ValueError("No verification pending")
        await self._request_verification(user)

    async def verify_code(self, code: str) -> bool:
        user = self._identity.current_user()
        if self.state != SessionState.NEEDS_VERIFICATION or user is None:
            raise ValueError("No verification pending")
        if not self._verifier.verify(user.id, code):
            self.error_message = "Invalid code, please try again"
            return False
        self.error_message = None
        self._persist(True)
        await self._user_service.mark_verified(user.id)
        await self._notifications.request_permission()
        self._set_state(SessionState.AUTHENTICATED)
        return True

    async def validate(self) -> SessionState:
        """Liveness check, run when the app returns to the foreground."""
        user = self._identity.current_user()
        if user is None:
            if self.state != SessionState.UNAUTHENTICATED:
                self._persist(False)
                self._set_state(SessionState.UNAUTHENTICATED)
            return self.state
        try:
            await self._identity.reload_and_validate()
        except AuthInvalidError as exc:
            await self._force_logout(user.id, exc)
        except (TransientNetworkError, BackendError) as exc:
            logger.warning("Session check deferred: %s", exc)
        return self.state

    async def _force_logout(self, user_id: str, exc: AuthInvalidError) -> None:
        logger.warning("Forcing logout of %s: %s", user_id, exc.reason)
        self.error_message = "Your session has ended, please sign in again"
        await self._end_session(user_id)
        await self._user_service.delete_profile(user_id)

    async def sign_out(self) -> None:
        user_id = self.user_id
        await self._end_session(user_id)
        self.error_message = None
        try:
            await self._notifications.clear_badge_count()
        except Exception as exc:
            logger.warning("Could not clear badge: %s", exc)

    async def _end_session(self, user_id: Optional[str]) -> None:
        if user_id is not None:
            self._verifier.discard(user_id)
        self._persist(False)
        try:
            await self._identity.sign_out()
        except ChatSyncError as exc:
            logger.warning("Provider sign out failed: %s", exc)
        self._set_state(SessionState.UNAUTHENTICATED)

    def _on_auth_state_change(self, user: Optional[IdentityUser]) -> None:
        if user is None and self.state not in (SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATING):
            self._persist(False)
            self._set_state(SessionState.UNAUTHENTICATED)

    def close(self) -> None:
        if self._remove_auth_listener is not None:
            self._remove_auth_listener()
            self._remove_auth_listener = None
