"""One-time codes for the secondary verification step after sign-in."""

import logging
from typing import Dict

import pyotp

logger = logging.getLogger(__name__)


class CodeVerifier:
    """Issues a fresh TOTP secret per login and checks codes against it."""

    def __init__(self, digits: int = 4, interval: int = 300) -> None:
        self._digits = digits
        self._interval = interval
        self._secrets: Dict[str, str] = {}

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self._digits, interval=self._interval)

    def issue(self, user_id: str) -> str:
        secret = pyotp.random_base32()
        self._secrets[user_id] = secret
        return self._totp(secret).now()

    def verify(self, user_id: str, code: str) -> bool:
        secret = self._secrets.get(user_id)
        if secret is None:
            return False
        # allows +-1 time step
        if not self._totp(secret).verify(code.strip(), valid_window=1):
            logger.info("Rejected verification code for %s", user_id)
            return False
        self._secrets.pop(user_id, None)
        return True

    def discard(self, user_id: str) -> None:
        self._secrets.pop(user_id, None)
