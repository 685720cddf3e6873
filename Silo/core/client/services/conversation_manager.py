"""
Direct conversation list.
Keeps the viewer's DM summaries (preview, last activity, unread count) in
the order the list is rendered.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from Silo.core.logging import get_logger

from ..interfaces import Backend, RealtimeFeed, Subscription
from ..models.data import ConversationKind, ConversationSummary
from ..utils.timefmt import format_ago, format_badge
from .unread import UnreadRefresher

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ConversationManager:
    """Manages the list of direct conversations."""

    def __init__(self, backend: Backend, refresher: Optional[UnreadRefresher] = None):
        self._backend = backend
        self.refresher = refresher or UnreadRefresher.for_direct_messages(backend)
        self._conversations: Dict[str, ConversationSummary] = {}
        self._conv_ids: List[str] = []
        self._active_cid: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self.error: Optional[Exception] = None

    @property
    def active_cid(self) -> Optional[str]:
        """Currently open conversation, if any."""
        return self._active_cid

    @active_cid.setter
    def active_cid(self, cid: Optional[str]) -> None:
        self._active_cid = cid
        if cid in self._conversations:
            self._conversations[cid].unread_count = 0

    @property
    def conversation_ids(self) -> List[str]:
        return self._conv_ids.copy()

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count for c in self._conversations.values())

    def get_conversation(self, cid: str) -> Optional[ConversationSummary]:
        return self._conversations.get(cid)

    def sync_conversations(self, conversations: Iterable[ConversationSummary]) -> None:
        """Replace the list with server summaries, most recent activity first."""
        fresh: Dict[str, ConversationSummary] = {}
        for summary in conversations:
            if summary.conversation_id in fresh:
                continue
            if summary.conversation_id == self._active_cid:
                summary.unread_count = 0
            fresh[summary.conversation_id] = summary

        self._conversations = fresh
        self._conv_ids = sorted(
            fresh,
            key=lambda cid: fresh[cid].last_message_at or _EPOCH,
            reverse=True,
        )

    async def refresh(self) -> List[ConversationSummary]:
        """
        Reload summaries from the backend.

        Raises:
            BackendError: the list could not be loaded; ``error`` is set
        """
        try:
            summaries = await self._backend.list_conversations()
        except Exception as e:
            self.error = e
            raise
        self.error = None
        self.sync_conversations(summaries)
        return [self._conversations[cid] for cid in self._conv_ids]

    async def refresh_quietly(self) -> None:
        """Background refresh; failures are only logged."""
        try:
            await self.refresh()
        except Exception as e:
            logger.debug("Conversation list refresh failed: %s", type(e).__name__)

    async def leave(self, cid: str) -> None:
        """Leave a conversation and drop it from the list."""
        await self._backend.leave_conversation(cid)
        self._conversations.pop(cid, None)
        if cid in self._conv_ids:
            self._conv_ids.remove(cid)
        if self._active_cid == cid:
            self._active_cid = None

    def get_conversation_labels(self, now: Optional[datetime] = None) -> List[str]:
        """Get display labels for all conversations."""
        labels = []
        for cid in self._conv_ids:
            conv = self._conversations[cid]
            label = conv.preview() or "No messages yet"
            time_tag = format_ago(conv.last_message_at, now)
            if time_tag:
                label = f"{label}  ·  {time_tag}"
            badge = format_badge(conv.unread_count)
            if badge:
                label = f"{label}  ({badge})"
            labels.append(label)
        return labels

    async def watch(self, feed: RealtimeFeed) -> Subscription:
        """Refresh the list and the unread total whenever a direct message is inserted."""
        if self._subscription is None:
            self._subscription = await feed.subscribe(
                ConversationKind.DIRECT.table, None, self._on_insert
            )
        return self._subscription

    async def _on_insert(self, data: Mapping[str, Any]) -> None:
        if data.get("type", data.get("eventType")) != "INSERT":
            return
        await self.refresh_quietly()
        await self.refresher.refresh()

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()


__all__ = ['ConversationManager']
