"""
Contracts for the collaborators the client core talks to.

The hosted backend (REST/RPC) and the realtime row feed are consumed through
these protocols only. ``Silo.api`` provides the network implementations and
the test suite provides in-memory ones.
"""

from abc import abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ..models.data import (
    AliasRecord,
    ConversationKind,
    ConversationSummary,
    DMRequest,
    Entity,
    EntityDraft,
    EntityId,
    Notification,
)

ChangeCallback = Callable[[Mapping[str, Any]], Awaitable[None]]


@runtime_checkable
class Backend(Protocol):
    """REST and RPC surface of the hosted backend. Failures raise ``BackendError``."""

    @abstractmethod
    async def fetch_entities(
        self,
        kind: ConversationKind,
        conversation_id: str,
        *,
        ascending: bool = True,
        limit: int = 100,
        before: Optional[datetime] = None,
    ) -> List[Entity]:
        """
        Fetch one page of a conversation.

        Args:
            kind: Direct messages or discussion replies
            conversation_id: Conversation to read
            ascending: Order by creation time ascending when True
            limit: Page size
            before: Only rows created strictly before this instant

        Returns:
            Entities in the requested order
        """
        ...

    @abstractmethod
    async def insert_entity(self, draft: EntityDraft) -> Entity:
        """Insert a message and return the authoritative row."""
        ...

    @abstractmethod
    async def mark_deleted(self, kind: ConversationKind, entity_id: EntityId) -> None:
        """Soft-delete one row."""
        ...

    @abstractmethod
    async def resolve_alias(self, conversation_id: str, author_id: str) -> Optional[AliasRecord]:
        """Look up the alias of ``author_id`` within one discussion; None if unassigned."""
        ...

    @abstractmethod
    async def total_unread(self) -> int:
        """Total unread direct messages for the viewer."""
        ...

    @abstractmethod
    async def unread_notifications(self) -> int:
        """Unread notifications for the viewer."""
        ...

    @abstractmethod
    async def mark_read(self, conversation_id: str, viewer_id: str, at: datetime) -> None:
        """Move the viewer's read marker for a conversation to ``at``."""
        ...

    @abstractmethod
    async def list_conversations(self) -> List[ConversationSummary]:
        """The viewer's direct conversations with previews and unread counts."""
        ...

    @abstractmethod
    async def leave_conversation(self, conversation_id: str) -> None:
        ...

    @abstractmethod
    async def fetch_notifications(self, limit: int, types: Sequence[str]) -> List[Notification]:
        """Latest notifications of the given types, newest first."""
        ...

    @abstractmethod
    async def mark_notifications_read(self, notification_ids: Sequence[str], at: datetime) -> None:
        ...

    @abstractmethod
    async def list_dm_requests(self, viewer_id: str) -> List[DMRequest]:
        """Pending requests where the viewer is requester or requested."""
        ...

    @abstractmethod
    async def respond_dm_request(self, request_id: str, action: str) -> Optional[str]:
        """Accept, decline or cancel a request; returns the conversation id on accept."""
        ...

    @abstractmethod
    async def report_user(
        self,
        target_user_id: str,
        reason: str,
        details: str,
        context: Dict[str, Any],
    ) -> None:
        ...

    @abstractmethod
    async def log_activity(self, activity_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        ...


@runtime_checkable
class Subscription(Protocol):
    """Handle for one realtime subscription."""

    @abstractmethod
    async def close(self) -> None:
        """Detach. No callback runs after this returns."""
        ...


@runtime_checkable
class RealtimeFeed(Protocol):
    """At-least-once, unordered feed of row changes."""

    @abstractmethod
    async def subscribe(self, table: str, filter: Optional[str], callback: ChangeCallback) -> Subscription:
        """
        Subscribe to row changes.

        Args:
            table: Table name
            filter: Row filter such as ``"conversation_id=eq.<id>"``, or None
            callback: Awaited with the raw change payload for every push

        Returns:
            Subscription handle
        """
        ...


__all__ = [
    'Backend',
    'ChangeCallback',
    'RealtimeFeed',
    'Subscription',
]
