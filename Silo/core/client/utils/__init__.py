"""
Utility functions and shared components for the Silo client core.
"""

from .constants import (
    BADGE_CAP,
    OP_LABEL,
    ANONYMOUS_LABEL,
    NOTIFICATION_TYPES,
)
from .exceptions import (
    ClientError,
    BackendError,
    AuthenticationError,
    RealtimeError,
    RealtimeDecodeError,
    ValidationError,
    SubmissionError,
    SubmissionTimeoutError,
    SoftDeleteError,
)
from .timefmt import format_ago, format_badge, parse_timestamp

__all__ = [
    'ClientError',
    'BackendError',
    'AuthenticationError',
    'RealtimeError',
    'RealtimeDecodeError',
    'ValidationError',
    'SubmissionError',
    'SubmissionTimeoutError',
    'SoftDeleteError',
    'BADGE_CAP',
    'OP_LABEL',
    'ANONYMOUS_LABEL',
    'NOTIFICATION_TYPES',
    'format_ago',
    'format_badge',
    'parse_timestamp',
]
