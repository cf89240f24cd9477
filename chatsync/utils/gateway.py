"""Remote data gateway contract and the live subscription machinery.

Documents are addressed by slash separated paths: ``chats/<id>`` for a top
level document and ``chats/<id>/messages/<mid>`` for one in a subcollection.
Both gateway implementations publish the collection path on the realtime
bus after every write; a ``Subscription`` re-runs its query whenever that
signal arrives and pushes the complete result set as a ``SnapshotEvent``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from chatsync.errors import BackendError, ChatSyncError, TransientNetworkError

logger = logging.getLogger(__name__)

CHANGES_CHANNEL_PREFIX = "changes:"
RETRY_DELAY = 2.0


@dataclass(frozen=True)
class Increment:
    """Field value that atomically adds ``amount`` to the stored number."""

    amount: int = 1


@dataclass(frozen=True)
class Query:
    collection: str
    array_contains: Optional[Tuple[str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


@dataclass
class Document:
    id: str
    path: str
    data: Dict[str, Any]


@dataclass
class SnapshotEvent:
    version: int
    documents: List[Document] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    error: Optional[ChatSyncError] = None


class DataGateway(Protocol):

    async def get_document(self, path: str) -> Optional[Document]: ...

    def subscribe(self, query: Query) -> "Subscription": ...

    async def set_document(self, path: str, value: Dict[str, Any]) -> None: ...

    async def update_fields(self, path: str, fields: Dict[str, Any]) -> None: ...

    async def add_document(self, collection: str, value: Dict[str, Any]) -> str: ...

    async def delete_document(self, path: str) -> None: ...

    async def query(self, query: Query) -> List[Document]: ...

    async def close(self) -> None: ...


def split_path(path: str) -> Tuple[str, str]:
    """Return ``(collection_path, document_id)`` for a document path."""
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def changes_channel(collection: str) -> str:
    return f"{CHANGES_CHANNEL_PREFIX}{collection.strip('/')}"


def sort_documents(documents: List[Document], order_by: Optional[str], descending: bool) -> List[Document]:
    """Order like the document store does: missing values rank lowest."""
    if not order_by:
        return documents

    def key(doc: Document):
        value = doc.data.get(order_by)
        return (value is not None, value if value is not None else 0)

    return sorted(documents, key=key, reverse=descending)


class Subscription:
    """Cancelable async stream of ``SnapshotEvent`` objects for one query.

    The first event carries the current result set. Later events are
    produced whenever the bus reports a change on the query's collection.
    Fetch failures and a lost change feed become events with ``error`` set;
    the stream keeps going and re-attaches to the bus after ``retry_delay``.
    """

    def __init__(
        self,
        query: Query,
        fetch: Callable[[Query], Awaitable[List[Document]]],
        bus,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        self.query = query
        self._fetch = fetch
        self._bus = bus
        self._retry_delay = retry_delay
        self._events: asyncio.Queue = asyncio.Queue()
        self._dirty = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._bus_sub = None
        self._bus_task: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Future] = None
        self._version = 0
        self._last_ids: List[str] = []
        self._cancelled = False
        self._exhausted = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> SnapshotEvent:
        if self._cancelled or self._exhausted:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._pump())
            self._task.add_done_callback(self._on_pump_done)
        event = await self._events.get()
        if event is None:
            self._exhausted = True
            raise StopAsyncIteration
        return event

    async def _on_change(self, _message: str) -> None:
        self._dirty.set()

    async def _pump(self) -> None:
        await self._attach()
        await self._emit()
        while not self._cancelled:
            await self._dirty.wait()
            self._dirty.clear()
            if self._bus_task is None:
                await self._attach()
            await self._emit()

    async def _attach(self) -> None:
        channel = changes_channel(self.query.collection)
        while not self._cancelled:
            try:
                self._bus_sub = await self._bus.subscribe(channel, self._on_change)
            except ChatSyncError as exc:
                self._fail(exc)
            except OSError as exc:
                self._fail(TransientNetworkError(f"Could not subscribe to {channel}: {exc}"))
            else:
                self._bus_task = asyncio.create_task(self._bus_sub.run())
                self._bus_task.add_done_callback(self._on_feed_done)
                return
            await asyncio.sleep(self._retry_delay)

    async def _emit(self) -> None:
        try:
            documents = await self._fetch(self.query)
        except ChatSyncError as exc:
            self._fail(exc)
            return
        self._version += 1
        ids = [doc.id for doc in documents]
        current = set(ids)
        removed = [doc_id for doc_id in self._last_ids if doc_id not in current]
        self._last_ids = ids
        self._events.put_nowait(SnapshotEvent(version=self._version, documents=documents, removed=removed))

    def _fail(self, exc: ChatSyncError) -> None:
        self._version += 1
        logger.warning("Snapshot %d for %s failed: %s", self._version, self.query.collection, exc)
        self._events.put_nowait(SnapshotEvent(version=self._version, error=exc))

    def _on_feed_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None or self._cancelled or task is not self._bus_task:
            # A clean finish means the bus was closed on shutdown.
            return
        self._bus_task = None
        self._bus_sub = None
        if not isinstance(exc, ChatSyncError):
            exc = TransientNetworkError(f"Change feed for {self.query.collection} stopped: {exc}")
        self._fail(exc)
        self._dirty.set()

    def _on_pump_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None or self._cancelled:
            return
        logger.error("Subscription for %s stopped", self.query.collection, exc_info=exc)
        self._fail(exc if isinstance(exc, ChatSyncError) else BackendError(str(exc)))
        self._events.put_nowait(None)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._events.put_nowait(None)
        if self._task is not None:
            self._task.cancel()
        if self._bus_task is not None:
            self._bus_task.cancel()
        if self._bus_sub is not None:
            self._closing = asyncio.ensure_future(self._bus_sub.cancel())


class BusBackedGateway:
    """Shared subscribe/notify plumbing for gateways that signal over a bus."""

    def __init__(self, bus) -> None:
        self._bus = bus

    def subscribe(self, query: Query) -> Subscription:
        return Subscription(query, self.query, self._bus)

    async def query(self, query: Query) -> List[Document]:
        raise NotImplementedError

    async def _notify(self, collection: str) -> None:
        await self._bus.publish(changes_channel(collection), collection)
