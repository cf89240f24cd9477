"""Tests for the in-memory gateway and live subscriptions."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from chatsync.errors import BackendError, TransientNetworkError
from chatsync.utils.gateway import Increment, Query, Subscription, changes_channel, split_path
from chatsync.utils.memory_gateway import MemoryGateway

from conftest import FlakyBus


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


class TestPaths:
    def test_split_top_level(self):
        assert split_path("chats/abc") == ("chats", "abc")

    def test_split_subcollection(self):
        assert split_path("/chats/abc/messages/m1/") == ("chats/abc/messages", "m1")

    def test_collection_path_is_rejected(self):
        with pytest.raises(ValueError):
            split_path("chats/abc/messages")

    def test_changes_channel(self):
        assert changes_channel("/chats/") == "changes:chats"


# ---------------------------------------------------------------------------
# Document operations
# ---------------------------------------------------------------------------


class TestDocuments:
    @pytest.mark.asyncio
    async def test_set_then_get_returns_a_copy(self, gateway):
        await gateway.set_document("users/u1", {"name": "Ann", "tags": ["a"]})
        doc = await gateway.get_document("users/u1")
        doc.data["tags"].append("b")

        again = await gateway.get_document("users/u1")
        assert again.id == "u1"
        assert again.path == "users/u1"
        assert again.data == {"name": "Ann", "tags": ["a"]}

    @pytest.mark.asyncio
    async def test_missing_document_is_none(self, gateway):
        assert await gateway.get_document("users/nobody") is None

    @pytest.mark.asyncio
    async def test_update_dotted_field_and_increment(self, gateway):
        await gateway.set_document("chats/c1", {"unread_counters": {"a": 0, "b": 2}})
        await gateway.update_fields("chats/c1", {"unread_counters.a": Increment(1), "unread_counters.b": 0})
        await gateway.update_fields("chats/c1", {"unread_counters.a": Increment(1)})

        doc = await gateway.get_document("chats/c1")
        assert doc.data["unread_counters"] == {"a": 2, "b": 0}

    @pytest.mark.asyncio
    async def test_increment_missing_counter_starts_from_zero(self, gateway):
        await gateway.set_document("chats/c1", {})
        await gateway.update_fields("chats/c1", {"unread_counters.x": Increment(3)})
        doc = await gateway.get_document("chats/c1")
        assert doc.data["unread_counters"] == {"x": 3}

    @pytest.mark.asyncio
    async def test_update_missing_document_raises(self, gateway):
        with pytest.raises(BackendError):
            await gateway.update_fields("chats/none", {"a": 1})

    @pytest.mark.asyncio
    async def test_add_document_assigns_distinct_ids(self, gateway):
        first = await gateway.add_document("chats/c1/messages", {"text": "one"})
        second = await gateway.add_document("chats/c1/messages", {"text": "two"})
        assert first != second
        doc = await gateway.get_document(f"chats/c1/messages/{first}")
        assert doc.data == {"text": "one"}

    @pytest.mark.asyncio
    async def test_delete(self, gateway):
        await gateway.set_document("users/u1", {"name": "Ann"})
        await gateway.delete_document("users/u1")
        await gateway.delete_document("users/u1")
        assert await gateway.get_document("users/u1") is None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQuery:
    @pytest.mark.asyncio
    async def test_array_contains_filter(self, gateway):
        await gateway.set_document("chats/c1", {"participants": ["a", "b"]})
        await gateway.set_document("chats/c2", {"participants": ["b", "c"]})
        await gateway.set_document("chats/c3", {"participants": ["a", "c"]})

        docs = await gateway.query(Query("chats", array_contains=("participants", "a")))
        assert sorted(d.id for d in docs) == ["c1", "c3"]

    @pytest.mark.asyncio
    async def test_descending_order_puts_missing_values_last(self, gateway):
        await gateway.set_document("chats/c1", {"at": 1})
        await gateway.set_document("chats/c2", {"at": None})
        await gateway.set_document("chats/c3", {"at": 5})

        docs = await gateway.query(Query("chats", order_by="at", descending=True))
        assert [d.id for d in docs] == ["c3", "c1", "c2"]

    @pytest.mark.asyncio
    async def test_limit(self, gateway):
        for i in range(5):
            await gateway.set_document(f"chats/c{i}", {"at": i})
        docs = await gateway.query(Query("chats", order_by="at", limit=2))
        assert [d.id for d in docs] == ["c0", "c1"]

    @pytest.mark.asyncio
    async def test_subcollections_are_separate(self, gateway):
        await gateway.add_document("chats/c1/messages", {"text": "for c1"})
        await gateway.add_document("chats/c2/messages", {"text": "for c2"})
        docs = await gateway.query(Query("chats/c1/messages"))
        assert [d.data["text"] for d in docs] == ["for c1"]


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscription:
    @pytest.mark.asyncio
    async def test_initial_snapshot_then_change(self, gateway):
        await gateway.set_document("chats/c1", {"participants": ["a", "b"]})
        sub = gateway.subscribe(Query("chats", array_contains=("participants", "a")))

        first = await sub.__anext__()
        assert first.version == 1
        assert [d.id for d in first.documents] == ["c1"]

        await gateway.set_document("chats/c2", {"participants": ["a", "c"]})
        second = await sub.__anext__()
        assert second.version == 2
        assert sorted(d.id for d in second.documents) == ["c1", "c2"]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_removed_ids_are_reported(self, gateway):
        await gateway.set_document("chats/c1", {"participants": ["a", "b"]})
        sub = gateway.subscribe(Query("chats"))
        await sub.__anext__()

        await gateway.delete_document("chats/c1")
        event = await sub.__anext__()
        assert event.documents == []
        assert event.removed == ["c1"]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent_and_ends_iteration(self, gateway):
        sub = gateway.subscribe(Query("chats"))
        await sub.__anext__()

        sub.cancel()
        sub.cancel()

        assert sub.cancelled
        with pytest.raises(StopAsyncIteration):
            await sub.__anext__()

    @pytest.mark.asyncio
    async def test_cancel_before_first_event(self, gateway):
        sub = gateway.subscribe(Query("chats"))
        sub.cancel()
        events = [event async for event in sub]
        assert events == []

    @pytest.mark.asyncio
    async def test_fetch_failure_becomes_error_event(self):
        gateway = MemoryGateway()
        with patch.object(gateway, "query", AsyncMock(side_effect=TransientNetworkError("offline"))):
            sub = gateway.subscribe(Query("chats"))
            event = await sub.__anext__()
        assert isinstance(event.error, TransientNetworkError)
        assert event.documents == []
        sub.cancel()

    @pytest.mark.asyncio
    async def test_failed_bus_subscribe_becomes_error_event_then_recovers(self):
        bus = FlakyBus(subscribe_failures=1)
        gateway = MemoryGateway(bus)
        await gateway.set_document("chats/c1", {"participants": ["a", "b"]})
        sub = Subscription(Query("chats"), gateway.query, bus, retry_delay=0)

        first = await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert first.version == 1
        assert isinstance(first.error, TransientNetworkError)
        assert first.documents == []

        second = await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert second.version == 2
        assert second.error is None
        assert [d.id for d in second.documents] == ["c1"]

        await gateway.set_document("chats/c2", {"participants": ["a", "c"]})
        third = await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert sorted(d.id for d in third.documents) == ["c1", "c2"]
        assert bus.subscribe_calls == 2
        sub.cancel()

    @pytest.mark.asyncio
    async def test_lost_change_feed_is_reported_and_reattached(self):
        bus = FlakyBus(broken_feeds=1)
        gateway = MemoryGateway(bus)
        await gateway.set_document("chats/c1", {"participants": ["a", "b"]})
        sub = Subscription(Query("chats"), gateway.query, bus, retry_delay=0)

        events = [await asyncio.wait_for(sub.__anext__(), timeout=1) for _ in range(3)]
        errors = [e for e in events if e.error is not None]
        assert len(errors) == 1
        assert isinstance(errors[0].error, TransientNetworkError)
        assert [d.id for d in events[-1].documents] == ["c1"]
        assert [e.version for e in events] == [1, 2, 3]
        assert bus.subscribe_calls == 2

        await gateway.set_document("chats/c2", {"participants": ["a", "c"]})
        latest = await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert sorted(d.id for d in latest.documents) == ["c1", "c2"]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_unexpected_failure_ends_stream_with_error(self):
        gateway = MemoryGateway()
        with patch.object(gateway, "query", AsyncMock(side_effect=RuntimeError("bug"))):
            sub = gateway.subscribe(Query("chats"))
            event = await asyncio.wait_for(sub.__anext__(), timeout=1)
            with pytest.raises(StopAsyncIteration):
                await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert isinstance(event.error, BackendError)
        sub.cancel()
