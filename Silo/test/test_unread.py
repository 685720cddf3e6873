"""
Unit tests for unread counters, the refresh backstop and read tracking.
"""

import asyncio
from datetime import timezone

import pytest

from Silo.core.client.services.unread import (
    ReadState,
    ReadTracker,
    UnreadCounter,
    UnreadRefresher,
    dm_unread,
    notifications_unread,
    reset_all,
)
from Silo.core.client.utils.exceptions import BackendError
from Silo.core.client.utils.timefmt import format_badge
from Silo.test.fakes import DM_ID, VIEWER, FakeBackend, ts


class TestUnreadCounter:
    """Observable counter semantics."""

    def setup_method(self):
        self.counter = UnreadCounter("test")
        self.seen = []
        self.unsubscribe = self.counter.subscribe(self.seen.append)

    def test_starts_at_zero(self):
        assert self.counter.value == 0

    def test_publish_notifies_once_even_if_unchanged(self):
        self.counter.publish(0)
        self.counter.publish(0)
        assert self.seen == [0, 0]

    def test_negative_clamped(self):
        self.counter.publish(-3)
        assert self.counter.value == 0

    def test_unsubscribe(self):
        self.unsubscribe()
        self.counter.publish(4)
        assert self.seen == []

    def test_failing_listener_does_not_block_others(self):
        def broken(value):
            raise RuntimeError("render failed")

        counter = UnreadCounter("other")
        counter.subscribe(broken)
        counter.subscribe(self.seen.append)
        counter.publish(2)
        assert self.seen == [2]

    def test_badge(self):
        self.counter.publish(150)
        assert self.counter.badge() == "99+"
        self.counter.publish(7)
        assert self.counter.badge() == "7"
        self.counter.publish(0)
        assert self.counter.badge() == ""

    def test_reset_on_sign_out(self):
        dm_unread.publish(3)
        notifications_unread.publish(8)
        reset_all()
        assert dm_unread.value == 0
        assert notifications_unread.value == 0


@pytest.mark.parametrize("count,expected", [(0, ""), (-1, ""), (1, "1"), (99, "99"), (100, "99+")])
def test_format_badge(count, expected):
    assert format_badge(count) == expected


class TestUnreadRefresher:
    """Backstop refresh."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.counter = UnreadCounter("dm")
        self.refresher = UnreadRefresher.for_direct_messages(self.backend, self.counter, interval=0.01)

    @pytest.mark.asyncio
    async def test_refresh_publishes_backend_total(self):
        self.backend.unread_total = 4
        assert await self.refresher.refresh() == 4
        assert self.counter.value == 4

    @pytest.mark.asyncio
    async def test_refresh_failure_is_swallowed(self):
        self.counter.publish(2)
        self.backend.failures["total_unread"] = BackendError("offline")

        assert await self.refresher.refresh() is None
        assert self.counter.value == 2

    @pytest.mark.asyncio
    async def test_focus_refreshes(self):
        self.backend.unread_total = 1
        await self.refresher.on_focus()
        assert self.counter.value == 1

    @pytest.mark.asyncio
    async def test_periodic_refresh(self):
        self.refresher.start()
        assert self.refresher.running
        await asyncio.sleep(0.05)
        await self.refresher.stop()

        assert not self.refresher.running
        assert self.backend.count("total_unread") >= 2

    @pytest.mark.asyncio
    async def test_periodic_refresh_survives_failures(self):
        self.backend.failures["total_unread"] = BackendError("offline")
        self.refresher.start()
        await asyncio.sleep(0.03)
        assert self.refresher.running
        await self.refresher.stop()

    @pytest.mark.asyncio
    async def test_notification_refresher_uses_notification_count(self):
        self.backend.notification_count = 6
        refresher = UnreadRefresher.for_notifications(self.backend)
        await refresher.refresh()
        assert notifications_unread.value == 6


class TestReadTracker:
    """Read state of one open conversation."""

    def setup_method(self):
        self.backend = FakeBackend()
        self.counter = UnreadCounter("dm")
        self.broadcasts = []
        self.counter.subscribe(self.broadcasts.append)
        self.refresher = UnreadRefresher.for_direct_messages(self.backend, self.counter)
        self.tracker = ReadTracker(self.backend, DM_ID, VIEWER, self.refresher, unread_count=5)

    @pytest.mark.asyncio
    async def test_mark_read_broadcasts_once_then_late_message_flips_back(self):
        self.backend.unread_total = 0
        assert self.tracker.state is ReadState.UNREAD

        await self.tracker.mark_read()

        assert self.broadcasts == [0]
        assert self.tracker.state is ReadState.READ
        assert self.tracker.count == 0

        self.tracker.on_incoming()
        assert self.tracker.is_unread
        assert self.tracker.count == 1

    @pytest.mark.asyncio
    async def test_mark_read_sends_marker(self):
        await self.tracker.mark_read(ts(10))
        assert self.backend.read_marks == [(DM_ID, VIEWER, ts(10))]

    @pytest.mark.asyncio
    async def test_default_marker_is_now_utc(self):
        await self.tracker.mark_read()
        at = self.backend.read_marks[0][2]
        assert at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_message_during_mark_keeps_unread(self):
        gate = asyncio.Event()
        self.backend.gates["mark_read"] = gate

        task = asyncio.create_task(self.tracker.mark_read())
        await asyncio.sleep(0)
        assert self.tracker.state is ReadState.MARKING_READ

        self.tracker.on_incoming()
        gate.set()
        await task

        assert self.tracker.state is ReadState.UNREAD
        assert self.tracker.count == 1

    @pytest.mark.asyncio
    async def test_failed_mark_restores_unread(self):
        self.backend.failures["mark_read"] = BackendError("denied")

        with pytest.raises(BackendError):
            await self.tracker.mark_read()

        assert self.tracker.state is ReadState.UNREAD
        assert self.tracker.count == 5
        assert self.broadcasts == []

    @pytest.mark.asyncio
    async def test_failed_mark_from_read_stays_read(self):
        tracker = ReadTracker(self.backend, DM_ID, VIEWER)
        self.backend.failures["mark_read"] = BackendError("denied")

        with pytest.raises(BackendError):
            await tracker.mark_read()

        assert tracker.state is ReadState.READ

    def test_incoming_increments_while_unread(self):
        self.tracker.on_incoming()
        assert self.tracker.count == 6
