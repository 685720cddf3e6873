"""
Notification feed for the viewer.
"""
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence

from Silo.config import config
from Silo.core.logging import get_logger

from ..interfaces import Backend, RealtimeFeed, Subscription
from ..models.data import Notification
from ..realtime.decode import decode_notification
from ..utils.constants import NOTIFICATION_TYPES
from ..utils.exceptions import RealtimeDecodeError
from .unread import UnreadCounter, UnreadRefresher, notifications_unread

logger = get_logger(__name__)


class NotificationFeed:
    """
    Latest notifications, newest first, plus the unread badge.

    Pushes only prepend; the badge is recomputed by the backend on load and
    after marking read.
    """

    def __init__(
        self,
        backend: Backend,
        viewer_id: str,
        *,
        counter: Optional[UnreadCounter] = None,
        limit: Optional[int] = None,
        types: Sequence[str] = NOTIFICATION_TYPES,
    ):
        self._backend = backend
        self.viewer_id = viewer_id
        self.counter = counter or notifications_unread
        self.refresher = UnreadRefresher.for_notifications(backend, self.counter)
        self.limit = config.NOTIFICATION_PAGE_SIZE if limit is None else limit
        self.types = tuple(types)
        self.items: List[Notification] = []
        self._subscription: Optional[Subscription] = None

    @property
    def unread(self) -> List[Notification]:
        return [n for n in self.items if not n.is_read]

    async def load(self) -> List[Notification]:
        rows = await self._backend.fetch_notifications(self.limit, self.types)
        self.items = [n for n in rows if n.type in self.types][:self.limit]
        await self.refresher.refresh()
        return self.items

    async def open(self, feed: RealtimeFeed) -> List[Notification]:
        """Subscribe to the viewer's notifications, then load the latest page."""
        if self._subscription is None:
            self._subscription = await feed.subscribe(
                "notifications", f"user_id=eq.{self.viewer_id}", self._on_insert
            )
        return await self.load()

    async def _on_insert(self, data: Mapping[str, Any]) -> None:
        if data.get("type", data.get("eventType")) != "INSERT":
            return
        try:
            notification = decode_notification(data)
        except RealtimeDecodeError as e:
            logger.warning("Dropped notification push: %s", e.message)
            return
        if notification.type not in self.types:
            return
        if any(n.id == notification.id for n in self.items):
            return
        self.items = [notification] + self.items[:self.limit - 1]
        if not notification.is_read:
            self.counter.increment()

    async def mark_read(self, notification: Notification, at: Optional[datetime] = None) -> None:
        """Mark one notification read (after the user opened it)."""
        if notification.is_read:
            return
        at = at or datetime.now(timezone.utc)
        await self._backend.mark_notifications_read([notification.id], at)
        for item in self.items:
            if item.id == notification.id:
                item.read_at = at
        notification.read_at = at
        self.counter.publish(self.counter.value - 1)

    async def mark_all_read(self, at: Optional[datetime] = None) -> int:
        """
        Mark every loaded unread notification read.

        Returns:
            How many were marked
        """
        pending = self.unread
        if not pending:
            return 0
        at = at or datetime.now(timezone.utc)
        await self._backend.mark_notifications_read([n.id for n in pending], at)
        for item in pending:
            item.read_at = at
        self.counter.publish(0)
        await self.refresher.refresh()
        return len(pending)

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()


__all__ = ['NotificationFeed']
