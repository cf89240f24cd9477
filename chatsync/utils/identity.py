"""Session/identity provider contract and an in-process provider.

Providers raise ``AuthInvalidError`` for sessions that must end,
``TransientNetworkError`` when they cannot be reached and ``BackendError``
for anything else.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol

from chatsync.errors import AuthErrorReason, AuthInvalidError, SignInError
from chatsync.schemas.user import IdentityUser

logger = logging.getLogger(__name__)

AuthStateListener = Callable[[Optional[IdentityUser]], None]


class IdentityProvider(Protocol):

    def current_user(self) -> Optional[IdentityUser]: ...

    async def sign_in(self, credential: str) -> IdentityUser: ...

    async def reload_and_validate(self) -> None: ...

    async def force_token_refresh(self) -> None: ...

    def on_auth_state_change(self, callback: AuthStateListener) -> Callable[[], None]: ...

    async def sign_out(self) -> None: ...


@dataclass
class _Account:
    user: IdentityUser
    credential: str
    disabled: bool = False


class LocalIdentityProvider:
    """Accounts registered in process, with expiring session tokens."""

    def __init__(self, token_lifetime: timedelta = timedelta(hours=1)) -> None:
        self._token_lifetime = token_lifetime
        self._accounts: Dict[str, _Account] = {}
        self._current: Optional[IdentityUser] = None
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._listeners: List[AuthStateListener] = []

    def register(self, user: IdentityUser, credential: str) -> None:
        self._accounts[user.id] = _Account(user=user, credential=credential)

    def disable(self, user_id: str) -> None:
        self._accounts[user_id].disabled = True

    def remove(self, user_id: str) -> None:
        self._accounts.pop(user_id, None)

    def restore_session(self, user_id: str) -> None:
        """Load a cached session, as found on disk at process start."""
        account = self._accounts.get(user_id)
        self._current = account.user if account else IdentityUser(id=user_id)
        self._issue_token()

    def expire_token(self) -> None:
        self._expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    def revoke_token(self) -> None:
        self._token = None

    def current_user(self) -> Optional[IdentityUser]:
        return self._current

    async def sign_in(self, credential: str) -> IdentityUser:
        for account in self._accounts.values():
            if secrets.compare_digest(account.credential, credential):
                if account.disabled:
                    raise SignInError("This account has been disabled")
                self._set_current(account.user)
                self._issue_token()
                return account.user
        raise SignInError("Unknown credential")

    def _account_for_current(self) -> _Account:
        if self._current is None:
            raise AuthInvalidError(AuthErrorReason.INVALID_TOKEN, "No session")
        account = self._accounts.get(self._current.id)
        if account is None:
            raise AuthInvalidError(AuthErrorReason.USER_NOT_FOUND)
        if account.disabled:
            raise AuthInvalidError(AuthErrorReason.USER_DISABLED)
        if self._token is None:
            raise AuthInvalidError(AuthErrorReason.INVALID_TOKEN)
        return account

    async def reload_and_validate(self) -> None:
        self._account_for_current()
        if self._expires_at is not None and self._expires_at <= datetime.now(timezone.utc):
            raise AuthInvalidError(AuthErrorReason.TOKEN_EXPIRED)

    async def force_token_refresh(self) -> None:
        self._account_for_current()
        self._issue_token()

    def on_auth_state_change(self, callback: AuthStateListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    async def sign_out(self) -> None:
        self._token = None
        self._expires_at = None
        self._set_current(None)

    def _issue_token(self) -> None:
        self._token = secrets.token_urlsafe(24)
        self._expires_at = datetime.now(timezone.utc) + self._token_lifetime

    def _set_current(self, user: Optional[IdentityUser]) -> None:
        changed = (user.id if user else None) != (self._current.id if self._current else None)
        self._current = user
        if changed:
            for listener in list(self._listeners):
                listener(user)
