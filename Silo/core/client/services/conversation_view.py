"""
Conversation view lifecycle.

Owns everything scoped to one open conversation: the reply store, the alias
cache, the read tracker, the composer and the realtime subscription. Opening
subscribes before the first fetch so nothing pushed during the load is lost;
closing tears all of it down, after which late callbacks and responses are
ignored.
"""
import asyncio
from dataclasses import replace
from typing import Any, Callable, List, Mapping, Optional, Set

from Silo.config import config
from Silo.core.logging import get_logger

from ..interfaces import Backend, RealtimeFeed, Subscription
from ..models.data import ChangeType, ConversationKind, Entity, EntityId, ThreadingMode
from ..realtime.decode import decode_change
from ..utils.exceptions import RealtimeDecodeError, ValidationError
from .alias_resolver import AliasResolver
from .composer import Composer, DirectMessageComposer, DiscussionComposer
from .reply_store import OptimisticReplyStore
from .unread import ReadTracker, UnreadRefresher

logger = get_logger(__name__)


class ConversationView:
    """One mounted DM thread or discussion thread."""

    def __init__(
        self,
        backend: Backend,
        feed: RealtimeFeed,
        kind: ConversationKind,
        conversation_id: str,
        viewer_id: str,
        *,
        room_id: Optional[str] = None,
        refresher: Optional[UnreadRefresher] = None,
        threading: Optional[ThreadingMode] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self._backend = backend
        self._feed = feed
        self.kind = kind
        self.conversation_id = conversation_id
        self.viewer_id = viewer_id

        self.store = OptimisticReplyStore(
            backend, kind, conversation_id, viewer_id,
            room_id=room_id,
            page_size=page_size,
            threading=threading or ThreadingMode(config.THREADING_MODE),
        )
        self.store.on_change = self._notify

        self.resolver: Optional[AliasResolver] = None
        self.tracker: Optional[ReadTracker] = None
        if kind is ConversationKind.DISCUSSION:
            self.resolver = AliasResolver(backend, conversation_id)
            self.composer: Composer = DiscussionComposer(self.store, backend, self.resolver, timeout=timeout)
        else:
            if refresher is None:
                refresher = UnreadRefresher.for_direct_messages(backend)
            self.tracker = ReadTracker(backend, conversation_id, viewer_id, refresher)
            self.composer = DirectMessageComposer(self.store, backend, self.tracker, timeout=timeout)

        self._subscription: Optional[Subscription] = None
        self.mounted = False
        self.dropped_events = 0
        self.listeners: List[Callable[[List[Entity]], None]] = []
        # label lookups started by realtime pushes
        self._label_tasks: Set[asyncio.Task] = set()

    @property
    def filter(self) -> str:
        return f"{self.kind.spec.conversation_column}=eq.{self.conversation_id}"

    @property
    def entities(self) -> List[Entity]:
        return self.store.entities

    def _notify(self) -> None:
        if not self.mounted:
            return
        snapshot = self.store.entities
        for listener in list(self.listeners):
            listener(snapshot)

    async def open(self) -> List[Entity]:
        """
        Mount the view: subscribe, load the latest page, resolve labels and
        (for DMs) mark the conversation read.

        Raises:
            BackendError: the initial load failed; ``store.error`` is set and
                the view stays mounted so the user can retry with ``reload``
        """
        self.mounted = True
        self._subscription = await self._feed.subscribe(self.kind.table, self.filter, self._on_change)
        logger.info("Opened %s conversation %s", self.kind.value, self.conversation_id)

        await self.reload()
        if self.tracker is not None:
            try:
                await self.tracker.mark_read()
            except Exception as e:
                logger.warning("Marking %s read failed: %s", self.conversation_id, type(e).__name__)
        return self.entities

    async def reload(self) -> List[Entity]:
        """(Re)fetch the latest page; also the manual retry after a load error."""
        await self.store.load_initial()
        await self._label_all()
        return self.entities

    async def load_older(self) -> int:
        added = await self.store.load_older()
        if added:
            await self._label_all()
        return added

    async def _label(self, entity: Entity) -> Optional[str]:
        if self.resolver is None or entity.author_id is None:
            return entity.label
        return await self.resolver.resolve(self.conversation_id, entity.author_id)

    async def _label_all(self) -> None:
        if self.resolver is None:
            return
        for entity in self.store.entities:
            if entity.label is not None or entity.author_id is None:
                continue
            label = await self._label(entity)
            if self.store.closed:
                return
            self.store.set_label(entity.id, label)

    async def _on_change(self, data: Mapping[str, Any]) -> None:
        if not self.mounted:
            return
        try:
            event = decode_change(self.kind, data)
        except RealtimeDecodeError as e:
            self.dropped_events += 1
            logger.warning("Dropped realtime push for %s: %s", self.conversation_id, e.message)
            return

        entity = event.entity
        if self.resolver is not None and entity is not None and entity.label is None:
            label = self.resolver.peek(entity.author_id)
            if label is not None:
                event.entity = replace(entity, label=label)

        is_new = self.store.get(event.entity_id) is None
        stored = self.store.apply_remote_event(event)
        if (
            self.tracker is not None
            and event.change is ChangeType.INSERT
            and is_new
            and stored is not None
            and stored.author_id != self.viewer_id
        ):
            self.tracker.on_incoming()

        if (
            self.resolver is not None
            and stored is not None
            and stored.label is None
            and stored.author_id is not None
            and not self.resolver.is_cached(stored.author_id)
        ):
            task = asyncio.get_running_loop().create_task(self._label_later(stored))
            self._label_tasks.add(task)
            task.add_done_callback(self._label_tasks.discard)

    async def _label_later(self, entity: Entity) -> None:
        # off the realtime receive loop
        label = await self._label(entity)
        if label is not None and not self.store.closed:
            self.store.set_label(entity.id, label)

    async def send(self, text: Optional[str] = None) -> Optional[Entity]:
        return await self.composer.submit(text)

    async def delete(self, entity_id: EntityId) -> Entity:
        return await self.store.soft_delete(entity_id)

    async def mark_read(self) -> None:
        if self.tracker is None:
            raise ValidationError("Only direct conversations track reads")
        await self.tracker.mark_read()

    async def report(self, entity_id: EntityId, reason: str = "abuse", details: str = "") -> None:
        """Report the author of a received message."""
        entity = self.store.get(entity_id)
        if entity is None or entity.is_placeholder:
            raise ValidationError("Unknown message", {"id": str(entity_id)})
        if entity.author_id is None or entity.author_id == self.viewer_id:
            raise ValidationError("Nothing to report on this message")
        if self.kind is ConversationKind.DIRECT:
            context = {
                "kind": "dm_message",
                "conversation_id": self.conversation_id,
                "dm_message_id": entity.id.value,
            }
        else:
            context = {
                "kind": "discussion_reply",
                "discussion_id": self.conversation_id,
                "message_id": entity.id.value,
            }
        await self._backend.report_user(entity.author_id, reason, details, context)

    async def close(self) -> None:
        """Unmount: detach realtime and drop every per-view cache."""
        if not self.mounted and self._subscription is None:
            return
        self.mounted = False
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            try:
                await subscription.close()
            except Exception as e:
                logger.warning("Closing subscription for %s failed: %s", self.conversation_id, type(e).__name__)
        for task in list(self._label_tasks):
            task.cancel()
        if self._label_tasks:
            await asyncio.gather(*self._label_tasks, return_exceptions=True)
        self.store.discard()
        if self.resolver is not None:
            self.resolver.discard()
        logger.info("Closed conversation %s", self.conversation_id)

    async def __aenter__(self) -> 'ConversationView':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ['ConversationView']
