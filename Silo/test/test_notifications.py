"""
Unit tests for the notification feed.
"""

import pytest

from Silo.core.client.models import Notification
from Silo.core.client.services.notifications import NotificationFeed
from Silo.core.client.services.unread import UnreadCounter
from Silo.core.client.utils.exceptions import BackendError
from Silo.test.fakes import VIEWER, FakeBackend, FakeRealtimeFeed, change, ts


def notification(id, type="reply_to_you", at=0, read=False, **kwargs):
    return Notification(
        id=id,
        type=type,
        created_at=ts(at),
        read_at=ts(at + 1) if read else None,
        **kwargs,
    )


def notification_row(id, type="reply_to_you", at=0):
    return {
        "id": id,
        "type": type,
        "created_at": ts(at).isoformat(),
        "read_at": None,
        "data": {"actor_label": "2"},
    }


class TestNotificationFeed:

    def setup_method(self):
        self.backend = FakeBackend()
        self.backend.notifications = [
            notification("n1", at=0),
            notification("n2", type="dm_received", at=5, read=True),
            notification("n3", type="system_broadcast", at=9),
        ]
        self.backend.notification_count = 1
        self.counter = UnreadCounter("notifications")
        self.feed = NotificationFeed(self.backend, VIEWER, counter=self.counter, limit=3)
        self.realtime = FakeRealtimeFeed()

    @pytest.mark.asyncio
    async def test_load_filters_types_newest_first(self):
        items = await self.feed.load()

        assert [n.id for n in items] == ["n2", "n1"]
        assert self.counter.value == 1

    @pytest.mark.asyncio
    async def test_open_subscribes_to_own_notifications(self):
        await self.feed.open(self.realtime)

        subscription = self.realtime.subscriptions[0]
        assert subscription.table == "notifications"
        assert subscription.filter == f"user_id=eq.{VIEWER}"

    @pytest.mark.asyncio
    async def test_push_prepends_and_increments(self):
        await self.feed.open(self.realtime)

        await self.realtime.push(change("INSERT", "notifications", notification_row("n4", at=20)))

        assert self.feed.items[0].id == "n4"
        assert self.feed.items[0].text == "2 replied to your message"
        assert self.counter.value == 2

    @pytest.mark.asyncio
    async def test_push_trims_to_limit(self):
        await self.feed.open(self.realtime)
        for i in range(4, 8):
            await self.realtime.push(change("INSERT", "notifications", notification_row(f"n{i}", at=20 + i)))

        assert len(self.feed.items) == 3
        assert self.feed.items[0].id == "n7"

    @pytest.mark.asyncio
    async def test_duplicate_push_ignored(self):
        await self.feed.open(self.realtime)
        payload = change("INSERT", "notifications", notification_row("n4"))

        await self.realtime.push(payload)
        await self.realtime.push(payload)

        assert [n.id for n in self.feed.items].count("n4") == 1
        assert self.counter.value == 2

    @pytest.mark.asyncio
    async def test_disallowed_and_malformed_pushes_ignored(self):
        await self.feed.open(self.realtime)

        await self.realtime.push(change("INSERT", "notifications", notification_row("n5", type="promo")))
        await self.realtime.push(change("INSERT", "notifications", {"id": "n6"}))

        assert [n.id for n in self.feed.items] == ["n2", "n1"]
        assert self.counter.value == 1

    @pytest.mark.asyncio
    async def test_mark_all_read(self):
        await self.feed.load()
        self.backend.notification_count = 0

        marked = await self.feed.mark_all_read(ts(100))

        assert marked == 1
        assert self.backend.notifications_marked == ["n1"]
        assert all(n.is_read for n in self.feed.items)
        assert self.counter.value == 0

    @pytest.mark.asyncio
    async def test_mark_all_read_with_nothing_unread(self):
        self.backend.notifications = [notification("n2", read=True)]
        await self.feed.load()

        assert await self.feed.mark_all_read() == 0
        assert self.backend.count("mark_notifications_read") == 0

    @pytest.mark.asyncio
    async def test_mark_all_read_failure_keeps_state(self):
        await self.feed.load()
        self.backend.failures["mark_notifications_read"] = BackendError("offline")

        with pytest.raises(BackendError):
            await self.feed.mark_all_read()

        assert len(self.feed.unread) == 1
        assert self.counter.value == 1

    @pytest.mark.asyncio
    async def test_mark_one_read(self):
        await self.feed.load()
        target = self.feed.items[1]

        await self.feed.mark_read(target, ts(100))

        assert self.feed.items[1].is_read
        assert self.counter.value == 0

    @pytest.mark.asyncio
    async def test_close(self):
        await self.feed.open(self.realtime)
        await self.feed.close()
        assert self.realtime.subscriptions == []


class TestNotificationText:

    @pytest.mark.parametrize("type,expected", [
        ("reply_to_you", "Someone replied to your message"),
        ("reply_in_discussion", "Someone posted in a discussion you're in"),
        ("dm_request", "New chat request"),
        ("dm_request_accepted", "Chat request accepted"),
        ("dm_received", "New message"),
        ("other", "Notification"),
    ])
    def test_text(self, type, expected):
        assert notification("n", type=type).text == expected
