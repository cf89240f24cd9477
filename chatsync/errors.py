from enum import StrEnum
from typing import Optional


class ChatSyncError(Exception):
    """Base class for failures surfaced by the sync core."""


class TransientNetworkError(ChatSyncError):
    """The gateway or identity provider could not be reached."""


class BackendError(ChatSyncError):
    """The backend answered with an error we do not classify further."""


class DecodeError(ChatSyncError):
    """A stored document does not have the expected shape."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"{path}: {detail}")
        self.path = path
        self.detail = detail


class AuthErrorReason(StrEnum):
    TOKEN_EXPIRED = "token-expired"
    INVALID_TOKEN = "invalid-token"
    USER_DISABLED = "user-disabled"
    USER_NOT_FOUND = "user-not-found"


class AuthInvalidError(ChatSyncError):
    """The session can no longer be used and the user must be logged out."""

    def __init__(self, reason: AuthErrorReason, message: Optional[str] = None) -> None:
        super().__init__(message or str(reason))
        self.reason = reason


class SignInError(ChatSyncError):
    """Primary sign-in was rejected."""


class BestEffortResult:
    """Outcome of an operation whose failure is logged but never raised."""

    __slots__ = ("ok", "error")

    def __init__(self, ok: bool, error: Optional[str] = None) -> None:
        self.ok = ok
        self.error = error

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        return f"BestEffortResult(ok={self.ok!r}, error={self.error!r})"
