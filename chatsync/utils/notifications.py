import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from chatsync.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class LocalNotification:
    title: str
    body: str
    payload: Dict[str, str] = field(default_factory=dict)


class LogNotificationSink:
    """Sink used when no push credentials are configured; alerts only go to the log."""

    def __init__(self) -> None:
        self.shown: List[LocalNotification] = []

    async def request_permission(self) -> bool:
        return True

    async def show(self, notification: LocalNotification) -> None:
        self.shown.append(notification)
        logger.info("Notification: %s - %s", notification.title, notification.body)

    async def clear_badge_count(self) -> None:
        return


class FcmNotificationSink:
    """Delivers alerts to this user's devices through Firebase Cloud Messaging."""

    def __init__(self, service_account_file: str, project_id: Optional[str], tokens: List[str]) -> None:
        from pyfcm import FCMNotification

        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)
        self._tokens = list(tokens)

    async def request_permission(self) -> bool:
        if not self._tokens:
            logger.warning("No FCM device tokens configured; notifications will not be delivered")
        return bool(self._tokens)

    async def show(self, notification: LocalNotification) -> None:
        # pyfcm is blocking
        for token in self._tokens:
            await asyncio.to_thread(
                self._client.notify,
                fcm_token=token,
                notification_title=notification.title,
                notification_body=notification.body,
                data_payload=notification.payload,
                apns_config={"payload": {"aps": {"badge": 1, "sound": "default"}}},
            )

    async def clear_badge_count(self) -> None:
        for token in self._tokens:
            await asyncio.to_thread(
                self._client.notify,
                fcm_token=token,
                apns_config={"payload": {"aps": {"badge": 0, "content-available": 1}}},
            )


def build_notification_sink(settings: Settings):
    if not settings.fcm_service_account_file:
        return LogNotificationSink()
    return FcmNotificationSink(
        settings.fcm_service_account_file,
        settings.fcm_project_id,
        settings.device_tokens,
    )
