"""Shared fixtures: in-memory gateway, local identity provider, recording sink."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from chatsync.client import ChatClient
from chatsync.config import Settings
from chatsync.context import ClientContext
from chatsync.errors import TransientNetworkError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import IdentityUser
from chatsync.utils.active_view import ActiveViewTracker
from chatsync.utils.gateway import Document, SnapshotEvent
from chatsync.utils.identity import LocalIdentityProvider
from chatsync.utils.local_storage import LocalStorage
from chatsync.utils.memory_gateway import MemoryGateway
from chatsync.utils.notifications import LogNotificationSink
from chatsync.utils.realtime_bus import LocalBus
from chatsync.utils.verification import CodeVerifier

ALICE = IdentityUser(id="u-alice", email="alice@example.com", display_name="Alice")
BOB = IdentityUser(id="u-bob", email="bob@example.com", display_name="Bob")
CAROL = IdentityUser(id="u-carol", email="carol@example.com", display_name="")


class ControlledSubscription:
    """Subscription stand-in whose events are pushed by the test."""

    def __init__(self) -> None:
        self._events: asyncio.Queue = asyncio.Queue()
        self.cancel_calls = 0
        self.cancelled = False

    def push(self, event: SnapshotEvent) -> None:
        self._events.put_nowait(event)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SnapshotEvent:
        if self.cancelled:
            raise StopAsyncIteration
        event = await self._events.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def cancel(self) -> None:
        self.cancel_calls += 1
        if not self.cancelled:
            self.cancelled = True
            self._events.put_nowait(None)


class FlakyBus(LocalBus):
    """Local bus that refuses the first subscriptions or hands out feeds that break."""

    def __init__(self, subscribe_failures: int = 0, broken_feeds: int = 0) -> None:
        super().__init__()
        self.subscribe_failures = subscribe_failures
        self.broken_feeds = broken_feeds
        self.subscribe_calls = 0

    async def subscribe(self, channel, on_message):
        self.subscribe_calls += 1
        if self.subscribe_failures:
            self.subscribe_failures -= 1
            raise TransientNetworkError("redis down")
        sub = await super().subscribe(channel, on_message)
        if self.broken_feeds:
            self.broken_feeds -= 1

            async def broken_run():
                raise TransientNetworkError("connection reset")

            sub.run = broken_run
        return sub


def conversation_doc(
    conversation_id: str,
    participants: List[str],
    last_message: Optional[str] = None,
    minutes_ago: Optional[int] = None,
    unread: Optional[Dict[str, int]] = None,
) -> Document:
    now = datetime.now(timezone.utc)
    data: Dict[str, Any] = {
        "participants": sorted(participants),
        "last_message": last_message,
        "last_message_at": now - timedelta(minutes=minutes_ago) if minutes_ago is not None else None,
        "last_message_sender_id": None,
        "created_at": now - timedelta(days=1),
        "unread_counters": unread or {},
    }
    return Document(id=conversation_id, path=f"chats/{conversation_id}", data=data)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(state_dir=tmp_path / "state", mongodb_url=None, redis_url=None)


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def identity() -> LocalIdentityProvider:
    provider = LocalIdentityProvider()
    provider.register(ALICE, "alice-token")
    provider.register(BOB, "bob-token")
    provider.register(CAROL, "carol-token")
    return provider


@pytest.fixture
def sink() -> LogNotificationSink:
    return LogNotificationSink()


@pytest.fixture
def storage(settings) -> LocalStorage:
    return LocalStorage(settings.state_dir)


@pytest.fixture
def verifier() -> CodeVerifier:
    return CodeVerifier(digits=4, interval=300)


@pytest.fixture
def active_view() -> ActiveViewTracker:
    return ActiveViewTracker()


@pytest.fixture
def context(settings, gateway, identity, sink, storage, verifier, active_view) -> ClientContext:
    return ClientContext(
        settings=settings,
        gateway=gateway,
        identity=identity,
        notifications=sink,
        storage=storage,
        verifier=verifier,
        active_view=active_view,
    )


@pytest.fixture
def client(context) -> ChatClient:
    return ChatClient(context)


@pytest.fixture
def conversation_repo(gateway) -> ConversationRepository:
    return ConversationRepository(gateway)


@pytest.fixture
def message_repo(gateway) -> MessageRepository:
    return MessageRepository(gateway)


@pytest.fixture
def user_repo(gateway) -> UserRepository:
    return UserRepository(gateway)


@pytest.fixture
def eventually():
    """Poll an async-visible condition until it holds or the timeout expires."""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


async def settle(rounds: int = 50) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def drain():
    return settle
