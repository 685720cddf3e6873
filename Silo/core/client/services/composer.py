"""
Composer: turns typed input into an optimistic send.
"""
import asyncio
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from Silo.config import config
from Silo.core.logging import get_logger

from ..interfaces import Backend
from ..models.data import ConversationKind, Entity, EntityId
from ..utils.constants import ACTIVITY_EXCERPT_CHARS, ACTIVITY_REPLY_CREATED
from ..utils.exceptions import ClientError, SubmissionError, SubmissionTimeoutError, ValidationError
from .alias_resolver import AliasResolver
from .reply_store import OptimisticReplyStore
from .unread import ReadTracker

logger = get_logger(__name__)


@dataclass
class ReplyTarget:
    """The message the next send answers."""
    id: str
    excerpt: str = ""

    @classmethod
    def from_entity(cls, entity: Entity, max_length: int = 80) -> 'ReplyTarget':
        snippet = entity.display_content.replace("\n", " ")
        if len(snippet) > max_length:
            snippet = snippet[:max_length] + "…"
        return cls(id=entity.id.value, excerpt=snippet)


class Composer:
    """
    Drives one submit/reconcile cycle at a time for a conversation.

    While a send is in flight further submits return None, which absorbs
    double Enter presses. The draft and reply target are cleared only after
    the backend confirmed the message.
    """

    def __init__(
        self,
        store: OptimisticReplyStore,
        backend: Backend,
        resolver: Optional[AliasResolver] = None,
        *,
        timeout: Optional[float] = None,
        min_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self._backend = backend
        self.resolver = resolver
        self.timeout = config.SUBMIT_TIMEOUT_SECONDS if timeout is None else timeout
        self.min_interval = config.MIN_SEND_INTERVAL_SECONDS if min_interval is None else min_interval
        self._clock = clock
        self._last_sent_at: Optional[float] = None

        self.draft = ""
        self.reply_target: Optional[ReplyTarget] = None
        self.sending = False
        self.error: Optional[ClientError] = None

    @property
    def can_send(self) -> bool:
        return not self.sending and bool(self.draft.strip())

    def set_reply_target(self, entity: Entity) -> ReplyTarget:
        if entity.is_placeholder:
            raise ValidationError("Cannot reply to a message that has not been sent")
        self.reply_target = ReplyTarget.from_entity(entity)
        return self.reply_target

    def clear_reply_target(self) -> None:
        self.reply_target = None

    def _submit_placeholder(self, content: str) -> EntityId:
        target = self.reply_target.id if self.reply_target else None
        label = self.resolver.peek(self.store.viewer_id) if self.resolver else None
        if self.store.kind is ConversationKind.DISCUSSION:
            return self.store.submit_optimistic(content, target, label=label)
        return self.store.submit_optimistic(content, reply_to_id=target, label=label)

    async def _label(self, entity: Entity) -> Entity:
        if self.resolver is None or entity.author_id is None:
            return entity
        label = await self.resolver.resolve(self.store.conversation_id, entity.author_id)
        return replace(entity, label=label) if label is not None else entity

    async def _insert(self, local_id: EntityId) -> Entity:
        draft = self.store.draft_for(local_id)
        try:
            confirmed = await asyncio.wait_for(
                self._backend.insert_entity(draft), self.timeout or None
            )
        except asyncio.TimeoutError as e:
            outcome = SubmissionTimeoutError(
                "Sending timed out, please retry", {"timeout": self.timeout}, cause=e
            )
            return self._settle_failure(local_id, outcome)
        except Exception as e:
            return self._settle_failure(local_id, e)

        stored = self.store.reconcile(local_id, await self._label(confirmed))
        return stored if stored is not None else confirmed

    def _settle_failure(self, local_id: EntityId, outcome: BaseException) -> Entity:
        # reconcile raises unless the row already arrived over realtime
        settled = self.store.reconcile(local_id, outcome)
        if settled is None:
            if isinstance(outcome, SubmissionError):
                raise outcome
            raise SubmissionError("Message could not be sent", cause=outcome) from outcome
        return settled

    async def submit(self, text: Optional[str] = None) -> Optional[Entity]:
        """
        Send ``text`` (or the current draft).

        Returns:
            The confirmed entity, or None if a send was already in flight

        Raises:
            ValidationError: empty content or sending too fast
            SubmissionError: the backend rejected the message (rolled back)
            SubmissionTimeoutError: no answer within ``timeout`` (rolled back)
        """
        if self.sending:
            return None
        content = (self.draft if text is None else text).strip()
        if not content:
            raise ValidationError("Message is empty")
        now = self._clock()
        if self._last_sent_at is not None and now - self._last_sent_at < self.min_interval:
            raise ValidationError("You're sending too fast. Try again.")

        self.sending = True
        self.error = None
        try:
            local_id = self._submit_placeholder(content)
            stored = await self._insert(local_id)
        except ClientError as e:
            self.error = e
            raise
        finally:
            self.sending = False

        self._last_sent_at = now
        self.draft = ""
        self.reply_target = None
        await self._after_send(stored)
        return stored

    async def _after_send(self, entity: Entity) -> None:
        pass


class DirectMessageComposer(Composer):
    """Composer for a DM thread; sending also moves the viewer's read marker."""

    def __init__(self, store: OptimisticReplyStore, backend: Backend,
                 tracker: Optional[ReadTracker] = None, **kwargs):
        super().__init__(store, backend, None, **kwargs)
        self.tracker = tracker

    async def _after_send(self, entity: Entity) -> None:
        if self.tracker is None:
            return
        try:
            await self.tracker.mark_read()
        except Exception as e:
            logger.warning("Marking %s read after send failed: %s", self.store.conversation_id, type(e).__name__)


class DiscussionComposer(Composer):
    """Composer for discussion replies; successful replies are logged as activity."""

    async def _after_send(self, entity: Entity) -> None:
        payload = {
            "roomId": self.store.room_id,
            "discussionId": self.store.conversation_id,
            "replyId": entity.id.value,
            "excerpt": entity.content[:ACTIVITY_EXCERPT_CHARS],
        }
        try:
            await self._backend.log_activity(ACTIVITY_REPLY_CREATED, payload)
        except Exception as e:
            logger.warning("Activity logging failed: %s", type(e).__name__)


__all__ = ['Composer', 'DirectMessageComposer', 'DiscussionComposer', 'ReplyTarget']
