"""
Client core for Silo.
Provides the optimistic reply store, alias labels, unread tracking and the
composer, independent of any particular transport.
"""

from .models import ConversationKind, Entity, EntityId, ThreadingMode
from .services import (
    AliasResolver,
    ConversationManager,
    ConversationView,
    DMRequestInbox,
    NotificationFeed,
    OptimisticReplyStore,
    UnreadCounter,
    UnreadRefresher,
    dm_unread,
    notifications_unread,
)

__all__ = [
    'ConversationKind', 'Entity', 'EntityId', 'ThreadingMode',
    'AliasResolver', 'ConversationManager', 'ConversationView',
    'DMRequestInbox', 'NotificationFeed', 'OptimisticReplyStore',
    'UnreadCounter', 'UnreadRefresher', 'dm_unread', 'notifications_unread',
]
