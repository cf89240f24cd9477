import logging
from typing import Optional

logger = logging.getLogger(__name__)


class ActiveViewTracker:
    """Remembers which conversation, if any, is on screen.

    Only touched from the event loop thread; not persisted.
    """

    def __init__(self) -> None:
        self._active_id: Optional[str] = None

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def set_active(self, conversation_id: Optional[str]) -> None:
        self._active_id = conversation_id
        logger.debug("Active conversation set to %s", conversation_id or "none")

    def clear(self) -> None:
        self._active_id = None
        logger.debug("Active conversation cleared")

    def is_active(self, conversation_id: str) -> bool:
        return self._active_id is not None and self._active_id == conversation_id
