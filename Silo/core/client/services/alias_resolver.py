"""
Per-discussion alias labels.

Authors in a discussion are shown as "OP" or a small number, never by
identity. The resolver caches one label per author for the lifetime of a
conversation view and is thrown away with it.
"""
import asyncio
from typing import Dict, Optional

from Silo.core.logging import get_logger

from ..interfaces import Backend
from ..utils.labels import normalize_label

logger = get_logger(__name__)


class AliasResolver:
    """Caches ``author -> label`` for one conversation."""

    def __init__(self, backend: Backend, conversation_id: str):
        self._backend = backend
        self.conversation_id = conversation_id
        self._labels: Dict[str, Optional[str]] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._discarded = False

    def _check_scope(self, conversation_id: str) -> None:
        if conversation_id != self.conversation_id:
            raise ValueError("Alias resolver is bound to another conversation")

    def peek(self, author_id: Optional[str]) -> Optional[str]:
        """Cached label without a lookup (None when unknown or anonymous)."""
        if author_id is None:
            return None
        return self._labels.get(author_id)

    def is_cached(self, author_id: str) -> bool:
        return author_id in self._labels

    async def resolve(self, conversation_id: str, author_id: Optional[str]) -> Optional[str]:
        """
        Label for ``author_id`` in this conversation.

        The first call per author performs one backend lookup; its answer,
        including "no alias", is cached. Concurrent calls for the same author
        share that lookup. A failed lookup yields None and is not cached.
        """
        self._check_scope(conversation_id)
        if author_id is None:
            return None
        if author_id in self._labels:
            return self._labels[author_id]

        pending = self._pending.get(author_id)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._pending[author_id] = future
        label = None
        try:
            record = await self._backend.resolve_alias(self.conversation_id, author_id)
            label = record.label if record is not None else None
            if not self._discarded:
                self._labels[author_id] = label
        except Exception as e:
            logger.warning("Alias lookup in %s failed: %s", self.conversation_id, type(e).__name__)
        finally:
            self._pending.pop(author_id, None)
            future.set_result(label)
        return label

    def discard(self) -> None:
        """Forget every label; the resolver is not reused after this."""
        self._discarded = True
        self._labels.clear()


__all__ = ['AliasResolver', 'normalize_label']
