import logging
from dataclasses import dataclass, field

from chatsync.config import Settings
from chatsync.utils.active_view import ActiveViewTracker
from chatsync.utils.gateway import DataGateway
from chatsync.utils.identity import IdentityProvider, LocalIdentityProvider
from chatsync.utils.local_storage import LocalStorage
from chatsync.utils.memory_gateway import MemoryGateway
from chatsync.utils.mongo_gateway import MongoGateway
from chatsync.utils.notifications import build_notification_sink
from chatsync.utils.realtime_bus import build_bus
from chatsync.utils.verification import CodeVerifier

logger = logging.getLogger(__name__)


@dataclass
class ClientContext:
    """Collaborators shared by the sync components, passed in explicitly."""

    settings: Settings
    gateway: DataGateway
    identity: IdentityProvider
    notifications: object
    storage: LocalStorage
    verifier: CodeVerifier
    active_view: ActiveViewTracker = field(default_factory=ActiveViewTracker)


def build_context(settings: Settings, identity: IdentityProvider | None = None) -> ClientContext:
    bus = build_bus(settings.redis_url)
    if settings.mongodb_url:
        gateway = MongoGateway.connect(settings.mongodb_url, settings.mongodb_db, bus, timeout_ms=settings.mongodb_timeout_ms)
    else:
        logger.info("No MONGODB_URL set, keeping documents in memory")
        gateway = MemoryGateway(bus)
    return ClientContext(
        settings=settings,
        gateway=gateway,
        identity=identity or LocalIdentityProvider(),
        notifications=build_notification_sink(settings),
        storage=LocalStorage(settings.state_dir),
        verifier=CodeVerifier(digits=settings.verification_digits, interval=settings.verification_interval),
    )
