"""
Stateful services of the client core.
"""

from .alias_resolver import AliasResolver
from .composer import Composer, DirectMessageComposer, DiscussionComposer, ReplyTarget
from .conversation_manager import ConversationManager
from .conversation_view import ConversationView
from .dm_requests import DMRequestInbox
from .notifications import NotificationFeed
from .reply_store import OptimisticReplyStore
from .unread import (
    ReadState,
    ReadTracker,
    UnreadCounter,
    UnreadRefresher,
    dm_unread,
    notifications_unread,
    reset_all,
)

__all__ = [
    'AliasResolver',
    'Composer',
    'DirectMessageComposer',
    'DiscussionComposer',
    'ReplyTarget',
    'ConversationManager',
    'ConversationView',
    'DMRequestInbox',
    'NotificationFeed',
    'OptimisticReplyStore',
    'ReadState',
    'ReadTracker',
    'UnreadCounter',
    'UnreadRefresher',
    'dm_unread',
    'notifications_unread',
    'reset_all',
]
