"""
Optimistic reply store.

Holds the ordered messages of one conversation and reconciles the three ways
rows reach the client: the initial page load, the viewer's own optimistic
sends, and realtime pushes. Delivery is best-effort; there is no sequence
number protocol and missed pushes are only recovered by a later reload.
"""
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Union

from Silo.config import config
from Silo.core.logging import get_logger

from ..interfaces import Backend
from ..models.data import (
    ChangeType,
    ConversationKind,
    Entity,
    EntityDraft,
    EntityId,
    RemoteEvent,
    ThreadingMode,
)
from ..utils.exceptions import SoftDeleteError, SubmissionError, ValidationError

logger = get_logger(__name__)


def default_page_size(kind: ConversationKind) -> int:
    if kind is ConversationKind.DIRECT:
        return config.DM_PAGE_SIZE
    return config.REPLY_PAGE_SIZE


class OptimisticReplyStore:
    """
    Ordered, duplicate-free view of one conversation.

    Entities are kept sorted by ``(created_at, id)``. Placeholders carry a
    local ``EntityId`` until ``reconcile`` swaps in the backend row. Applying
    the backend response and the realtime echo of the same row in either
    order leaves exactly one entity with the remote id.
    """

    def __init__(
        self,
        backend: Backend,
        kind: ConversationKind,
        conversation_id: str,
        viewer_id: Optional[str] = None,
        *,
        room_id: Optional[str] = None,
        page_size: Optional[int] = None,
        threading: ThreadingMode = ThreadingMode.ONE_LEVEL,
    ):
        self._backend = backend
        self.kind = kind
        self.conversation_id = conversation_id
        self.viewer_id = viewer_id
        self.room_id = room_id
        self.page_size = page_size or default_page_size(kind)
        self.threading = threading

        self._entities: List[Entity] = []
        # placeholder id -> remote id it was matched to by a realtime push
        self._adopted: Dict[EntityId, EntityId] = {}
        # rows the backend itself reported as deleted
        self._confirmed_deleted: Set[EntityId] = set()
        self._closed = False

        self.error: Optional[Exception] = None
        self.loaded = False
        self.has_more = False
        # render hook, called after every visible change
        self.on_change: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------ access

    @property
    def entities(self) -> List[Entity]:
        return list(self._entities)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._entities)

    def get(self, entity_id: EntityId) -> Optional[Entity]:
        idx = self._find(entity_id)
        return None if idx is None else self._entities[idx]

    def _find(self, entity_id: EntityId) -> Optional[int]:
        for idx, entity in enumerate(self._entities):
            if entity.id == entity_id:
                return idx
        return None

    def _sort(self) -> None:
        self._entities.sort(key=lambda e: e.sort_key)

    def _changed(self) -> None:
        if self.on_change is not None and not self._closed:
            self.on_change()

    def _upsert(self, incoming: Entity) -> Entity:
        """Insert or update by id. Soft deletes are never undone by stale rows."""
        if incoming.is_deleted:
            self._confirmed_deleted.add(incoming.id)
        idx = self._find(incoming.id)
        if idx is None:
            self._entities.append(incoming)
            self._sort()
            return incoming

        current = self._entities[idx]
        merged = replace(
            incoming,
            label=incoming.label if incoming.label is not None else current.label,
            is_deleted=incoming.is_deleted or current.is_deleted,
        )
        self._entities[idx] = merged
        self._sort()
        return merged

    # ------------------------------------------------------------------ loading

    async def load_initial(self) -> List[Entity]:
        """
        Load the most recent page of the conversation.

        Rows are merged with anything realtime delivered while the fetch was
        in flight. On failure the store stays empty, ``error`` is set and the
        exception propagates; there is no automatic retry.
        """
        try:
            rows = await self._backend.fetch_entities(
                self.kind, self.conversation_id,
                ascending=False, limit=self.page_size,
            )
        except Exception as e:
            if not self._closed:
                self.error = e
            logger.warning("Initial load of %s failed: %s", self.conversation_id, type(e).__name__)
            raise

        if self._closed:
            return []

        self.error = None
        for row in rows:
            self._upsert(row)
        self.loaded = True
        self.has_more = len(rows) >= self.page_size
        logger.debug("Loaded %d entities for %s", len(rows), self.conversation_id)
        self._changed()
        return self.entities

    async def load_older(self) -> int:
        """
        Load the page before the oldest confirmed entity.

        Returns:
            Number of entities added in front, so a host can keep its scroll
            anchor on the entity that was first before the call.
        """
        if self._closed or not self.has_more:
            return 0
        confirmed = [e for e in self._entities if not e.is_placeholder]
        before = confirmed[0].created_at if confirmed else None

        rows = await self._backend.fetch_entities(
            self.kind, self.conversation_id,
            ascending=False, limit=self.page_size, before=before,
        )
        if self._closed:
            return 0

        added = 0
        for row in rows:
            if self._find(row.id) is None:
                added += 1
            self._upsert(row)
        self.has_more = len(rows) >= self.page_size
        if added:
            self._changed()
        return added

    # ------------------------------------------------------------------ sending

    def normalize_parent(self, parent_id: Optional[str]) -> Optional[str]:
        """Apply the threading mode to a requested parent reference."""
        if parent_id is None or self.kind is not ConversationKind.DISCUSSION:
            return parent_id
        if self.threading is ThreadingMode.FLAT:
            return None
        if self.threading is ThreadingMode.ONE_LEVEL:
            parent = self.get(EntityId.remote(parent_id))
            if parent is not None and parent.parent_id is not None:
                return parent.parent_id
        return parent_id

    def submit_optimistic(
        self,
        content: str,
        parent_id: Optional[str] = None,
        *,
        reply_to_id: Optional[str] = None,
        label: Optional[str] = None,
    ) -> EntityId:
        """
        Insert a placeholder for a message that is about to be sent.

        Runs synchronously, so the placeholder is visible before any network
        round-trip. Returns the placeholder id for ``reconcile``.
        """
        if self._closed:
            raise ValidationError("Conversation view is closed")
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message is empty")

        placeholder = Entity(
            id=EntityId.new_local(),
            kind=self.kind,
            conversation_id=self.conversation_id,
            content=text,
            created_at=datetime.now(timezone.utc),
            author_id=self.viewer_id,
            room_id=self.room_id,
            parent_id=self.normalize_parent(parent_id),
            reply_to_id=reply_to_id,
            label=label,
        )
        self._entities.append(placeholder)
        self._sort()
        self._changed()
        logger.debug("Placeholder %s queued in %s", placeholder.id, self.conversation_id)
        return placeholder.id

    def draft_for(self, local_id: EntityId) -> EntityDraft:
        """Build the insert request for a pending placeholder."""
        placeholder = self.get(local_id)
        if placeholder is None or not placeholder.is_placeholder:
            raise ValidationError("No pending message with that id", {"id": str(local_id)})
        return EntityDraft(
            kind=self.kind,
            conversation_id=self.conversation_id,
            content=placeholder.content,
            room_id=placeholder.room_id,
            parent_id=placeholder.parent_id,
            reply_to_id=placeholder.reply_to_id,
        )

    def reconcile(self, local_id: EntityId, outcome: Union[Entity, BaseException]) -> Optional[Entity]:
        """
        Settle a placeholder with the backend's answer.

        Args:
            local_id: Id returned by ``submit_optimistic``
            outcome: The authoritative row, or the exception the insert raised

        Returns:
            The stored confirmed entity, or None once the store is discarded

        Raises:
            SubmissionError: the insert failed; the placeholder has been removed
        """
        if self._closed:
            logger.debug("Ignoring reconcile of %s after discard", local_id)
            return None

        idx = self._find(local_id)
        placeholder = self._entities.pop(idx) if idx is not None else None
        adopted_id = self._adopted.pop(local_id, None)

        if isinstance(outcome, BaseException):
            if adopted_id is not None:
                # The row reached us over realtime, so it exists on the backend.
                logger.info("Insert for %s reported failure but %s already arrived", local_id, adopted_id)
                return self.get(adopted_id)
            logger.info("Rolled back placeholder %s: %s", local_id, type(outcome).__name__)
            if placeholder is not None:
                self._changed()
            if isinstance(outcome, SubmissionError):
                raise outcome
            raise SubmissionError(
                "Message could not be sent",
                {"reason": str(outcome)},
                cause=outcome,
            ) from outcome

        confirmed = outcome
        if confirmed.label is None and placeholder is not None and placeholder.label is not None:
            confirmed = replace(confirmed, label=placeholder.label)
        stored = self._upsert(confirmed)
        logger.debug("Placeholder %s confirmed as %s", local_id, stored.id)
        self._changed()
        return stored

    # ------------------------------------------------------------------ realtime

    def _match_placeholder(self, entity: Entity) -> Optional[int]:
        if self.viewer_id is None or entity.author_id != self.viewer_id:
            return None
        for idx, candidate in enumerate(self._entities):
            if (
                candidate.is_placeholder
                and candidate.content == entity.content
                and candidate.parent_id == entity.parent_id
                and candidate.reply_to_id == entity.reply_to_id
            ):
                return idx
        return None

    def apply_remote_event(self, event: RemoteEvent) -> Optional[Entity]:
        """
        Upsert a decoded realtime change by its remote id.

        A push for a row already present (reconciled send or duplicate
        delivery) updates it in place. An INSERT of the viewer's own row that
        matches a still-pending placeholder takes that placeholder's slot.
        DELETE marks the row deleted; nothing is removed client-side.
        """
        if self._closed:
            return None

        if event.change is ChangeType.DELETE:
            idx = self._find(event.entity_id)
            if idx is None:
                return None
            self._confirmed_deleted.add(event.entity_id)
            self._entities[idx] = replace(self._entities[idx], is_deleted=True)
            self._changed()
            return self._entities[idx]

        entity = event.entity
        if entity is None:
            return None
        if entity.conversation_id != self.conversation_id:
            logger.warning("Dropping push for %s delivered to %s", entity.id, self.conversation_id)
            return None

        if event.change is ChangeType.INSERT and self._find(entity.id) is None:
            idx = self._match_placeholder(entity)
            if idx is not None:
                placeholder = self._entities.pop(idx)
                self._adopted[placeholder.id] = entity.id
                if entity.label is None:
                    entity = replace(entity, label=placeholder.label)
                logger.debug("Push %s adopted placeholder %s", entity.id, placeholder.id)

        stored = self._upsert(entity)
        self._changed()
        return stored

    def set_label(self, entity_id: EntityId, label: Optional[str]) -> None:
        """Attach a resolved alias label to an entity already in the store."""
        idx = self._find(entity_id)
        if idx is None or self._entities[idx].label == label:
            return
        self._entities[idx] = replace(self._entities[idx], label=label)
        self._changed()

    # ------------------------------------------------------------------ deleting

    async def soft_delete(self, entity_id: EntityId) -> Entity:
        """
        Hide an entity's content, then persist the flag.

        Calling it on an already deleted entity is a no-op. If the backend
        call fails the flag is reverted and ``SoftDeleteError`` is raised,
        unless a backend row or push confirmed the delete meanwhile.
        """
        idx = self._find(entity_id)
        if idx is None:
            raise ValidationError("Unknown message", {"id": str(entity_id)})
        current = self._entities[idx]
        if current.is_placeholder:
            raise ValidationError("Message has not been sent yet", {"id": str(entity_id)})
        if current.is_deleted:
            return current

        self._entities[idx] = replace(current, is_deleted=True)
        self._changed()
        try:
            await self._backend.mark_deleted(self.kind, entity_id)
        except Exception as e:
            if entity_id in self._confirmed_deleted:
                # the backend reported the row deleted while the call was in flight
                logger.info("Soft delete of %s failed but was already confirmed", entity_id)
                return self.get(entity_id) or replace(current, is_deleted=True)
            idx = self._find(entity_id)
            if not self._closed and idx is not None:
                self._entities[idx] = replace(self._entities[idx], is_deleted=False)
                self._changed()
            logger.info("Soft delete of %s reverted: %s", entity_id, type(e).__name__)
            raise SoftDeleteError("Message could not be deleted", {"id": str(entity_id)}, cause=e) from e

        logger.debug("Soft-deleted %s", entity_id)
        return self.get(entity_id) or replace(current, is_deleted=True)

    # ------------------------------------------------------------------ teardown

    def discard(self) -> None:
        """Detach the store; later results and pushes are ignored."""
        self._closed = True
        self._entities = []
        self._adopted.clear()


__all__ = ['OptimisticReplyStore', 'default_page_size']
