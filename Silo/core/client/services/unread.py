"""
Unread counters and read tracking.

``UnreadCounter`` is the process-wide observable behind the chrome's badges.
``UnreadRefresher`` recomputes a counter from the backend on demand, on focus
and on a timer. ``ReadTracker`` follows one open conversation through
unread, marking-read and read.
"""
import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from Silo.config import config
from Silo.core.logging import get_logger

from ..interfaces import Backend
from ..utils.constants import BADGE_CAP
from ..utils.timefmt import format_badge

logger = get_logger(__name__)

Listener = Callable[[int], None]


class UnreadCounter:
    """
    Observable unread total.

    Starts at 0. Every ``publish`` stores the value and calls each listener
    once with it, even when the value did not change, so a listener can
    treat a publish as "the backend confirmed this". The last publish wins.
    ``reset`` is called on sign-out.
    """

    def __init__(self, name: str, initial: int = 0):
        self.name = name
        self._initial = initial
        self._value = initial
        self._listeners: List[Listener] = []

    @property
    def value(self) -> int:
        return self._value

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, value: int) -> None:
        self._value = max(0, int(value))
        for listener in list(self._listeners):
            try:
                listener(self._value)
            except Exception:
                logger.exception("Unread listener on %s failed", self.name)

    def increment(self, by: int = 1) -> None:
        self.publish(self._value + by)

    def reset(self) -> None:
        self.publish(self._initial)

    def badge(self, cap: int = BADGE_CAP) -> str:
        return format_badge(self._value, cap)


# Process-wide counters read by the page chrome.
dm_unread = UnreadCounter("dm")
notifications_unread = UnreadCounter("notifications")


def reset_all() -> None:
    """Zero every process-wide counter (sign-out)."""
    dm_unread.reset()
    notifications_unread.reset()


class UnreadRefresher:
    """
    Keeps one counter in line with the backend.

    ``refresh`` is a backstop: failures are logged and swallowed, and the
    next tick or focus event tries again.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[int]],
        counter: UnreadCounter,
        interval: Optional[float] = None,
    ):
        self._fetch = fetch
        self.counter = counter
        self.interval = config.UNREAD_REFRESH_SECONDS if interval is None else interval
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def for_direct_messages(cls, backend: Backend, counter: UnreadCounter = None, **kwargs) -> 'UnreadRefresher':
        return cls(backend.total_unread, counter or dm_unread, **kwargs)

    @classmethod
    def for_notifications(cls, backend: Backend, counter: UnreadCounter = None, **kwargs) -> 'UnreadRefresher':
        return cls(backend.unread_notifications, counter or notifications_unread, **kwargs)

    async def refresh(self) -> Optional[int]:
        """Recompute and publish; returns the new total or None on failure."""
        try:
            total = await self._fetch()
        except Exception as e:
            logger.debug("Unread refresh for %s failed: %s", self.counter.name, type(e).__name__)
            return None
        self.counter.publish(total)
        return self.counter.value

    async def on_focus(self) -> Optional[int]:
        return await self.refresh()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic refresh on the running loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class ReadState(Enum):
    UNREAD = "unread"
    MARKING_READ = "marking_read"
    READ = "read"


class ReadTracker:
    """
    Read state of one open direct conversation.

    UNREAD -> MARKING_READ -> READ. An incoming message while READ moves
    back to UNREAD with a count of 1; further ones increment. Messages that
    arrive while the mark is in flight keep the conversation UNREAD with
    their count once the mark completes.
    """

    def __init__(
        self,
        backend: Backend,
        conversation_id: str,
        viewer_id: str,
        refresher: Optional[UnreadRefresher] = None,
        unread_count: int = 0,
    ):
        self._backend = backend
        self.conversation_id = conversation_id
        self.viewer_id = viewer_id
        self.refresher = refresher
        self.count = unread_count
        self.state = ReadState.UNREAD if unread_count > 0 else ReadState.READ
        self._arrived_while_marking = 0

    @property
    def is_unread(self) -> bool:
        return self.state is ReadState.UNREAD

    def on_incoming(self) -> None:
        if self.state is ReadState.MARKING_READ:
            self._arrived_while_marking += 1
        elif self.state is ReadState.READ:
            self.state = ReadState.UNREAD
            self.count = 1
        else:
            self.count += 1

    async def mark_read(self, at: Optional[datetime] = None) -> None:
        """
        Move the read marker to ``at`` (now by default) and refresh the total.

        Raises:
            BackendError: the marker update failed; the previous state is restored
        """
        previous_state, previous = self.state, self.count
        self.state = ReadState.MARKING_READ
        self._arrived_while_marking = 0
        try:
            await self._backend.mark_read(
                self.conversation_id, self.viewer_id, at or datetime.now(timezone.utc)
            )
        except Exception:
            self.count = previous + self._arrived_while_marking
            self.state = ReadState.UNREAD if self.count else previous_state
            raise

        if self._arrived_while_marking:
            self.state = ReadState.UNREAD
            self.count = self._arrived_while_marking
        else:
            self.state = ReadState.READ
            self.count = 0

        if self.refresher is not None:
            await self.refresher.refresh()


__all__ = [
    'UnreadCounter',
    'UnreadRefresher',
    'ReadState',
    'ReadTracker',
    'dm_unread',
    'notifications_unread',
    'reset_all',
]
