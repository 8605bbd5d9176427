"""Unit tests for the change feed."""
import asyncio
import pytest

from callsignal.services.store.events import ChangeFilter, ChangeKind
from callsignal.services.store.feed import ChangeFeed


class TestChangeFilter:
    """Test event matching."""

    def test_status_by_kind(self, call_event):
        """Test inserts filtered by status while updates pass with any status."""
        change_filter = ChangeFilter(
            table="calls",
            receiver_id="bob",
            status_by_kind={ChangeKind.INSERT: "pending"},
        )

        assert change_filter.matches(call_event(ChangeKind.INSERT, status="pending"))
        assert not change_filter.matches(call_event(ChangeKind.INSERT, status="accepted"))
        assert change_filter.matches(call_event(ChangeKind.UPDATE, status="accepted"))
        assert not change_filter.matches(call_event(ChangeKind.INSERT, receiver_id="dave"))

    def test_table_and_kinds(self, call_event):
        """Test table and kind restrictions."""
        updates_only = ChangeFilter(table="calls", kinds=frozenset({ChangeKind.UPDATE}))
        messages = ChangeFilter(table="messages")

        assert not updates_only.matches(call_event(ChangeKind.INSERT))
        assert updates_only.matches(call_event(ChangeKind.UPDATE))
        assert not messages.matches(call_event(ChangeKind.INSERT))


class TestChangeFeed:
    """Test fan-out and subscription lifecycle."""

    @pytest.mark.asyncio
    async def test_delivers_in_emission_order(self, call_event):
        """Test that a subscriber sees events in publish order."""
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter(table="calls"))

        feed.publish(call_event(call_id="1"))
        feed.publish(call_event(ChangeKind.UPDATE, call_id="1", status="accepted"))
        feed.publish(call_event(call_id="2"))

        received = [await subscription.get() for _ in range(3)]
        assert [(e.kind, e.record["id"]) for e in received] == [
            (ChangeKind.INSERT, "1"),
            (ChangeKind.UPDATE, "1"),
            (ChangeKind.INSERT, "2"),
        ]

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_stops_iteration(self, call_event):
        """Test closing twice and that iteration ends after close."""
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter(table="calls"))
        seen = []

        async def consume():
            async for event in subscription:
                seen.append(event)
                subscription.task_done()

        consumer = asyncio.create_task(consume())
        feed.publish(call_event())
        await subscription.join()

        subscription.close()
        subscription.close()
        await asyncio.wait_for(consumer, timeout=1)

        assert feed.publish(call_event(call_id="late")) == 0
        assert feed.subscriber_count() == 0
        assert [e.record["id"] for e in seen] == ["call-1"]

    @pytest.mark.asyncio
    async def test_get_after_close_returns_none(self, call_event):
        """Test that queued events are dropped once closed."""
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter(table="calls"))
        feed.publish(call_event())

        subscription.close()

        assert await subscription.get() is None
        await subscription.join()

    @pytest.mark.asyncio
    async def test_close_releases_pending_join(self, call_event):
        """Test that a join waiting on unhandled events returns once closed."""
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter(table="calls"))
        feed.publish(call_event(call_id="1"))
        feed.publish(call_event(call_id="2"))
        await subscription.get()

        waiter = asyncio.create_task(subscription.join())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        subscription.close()

        await asyncio.wait_for(waiter, timeout=1)
