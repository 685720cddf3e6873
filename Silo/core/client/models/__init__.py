"""
Data models for the Silo client core.
"""

from .data import (
    AliasRecord,
    ChangeType,
    ConversationKind,
    ConversationSummary,
    DMRequest,
    Entity,
    EntityDraft,
    EntityId,
    IdKind,
    Notification,
    RemoteEvent,
    ThreadingMode,
)

__all__ = [
    'AliasRecord',
    'ChangeType',
    'ConversationKind',
    'ConversationSummary',
    'DMRequest',
    'Entity',
    'EntityDraft',
    'EntityId',
    'IdKind',
    'Notification',
    'RemoteEvent',
    'ThreadingMode',
]
