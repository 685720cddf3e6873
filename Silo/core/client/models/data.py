"""
Data models for the Silo client core.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..utils.constants import (
    ANONYMOUS_LABEL,
    DELETED_DM_TEXT,
    DELETED_REPLY_TEXT,
    OP_LABEL,
)
from ..utils.timefmt import parse_timestamp


class IdKind(Enum):
    """Where an entity identifier came from."""
    LOCAL = "local"    # placeholder minted by this client
    REMOTE = "remote"  # assigned by the backend


@dataclass(frozen=True)
class EntityId:
    """
    Tagged entity identifier.

    A local id and a remote id never compare equal, whatever their values,
    so a placeholder can't be mistaken for a confirmed row.
    """
    kind: IdKind
    value: str

    @classmethod
    def remote(cls, value: Any) -> 'EntityId':
        if value is None or str(value) == "":
            raise ValueError("remote id must not be empty")
        return cls(IdKind.REMOTE, str(value))

    @classmethod
    def new_local(cls) -> 'EntityId':
        return cls(IdKind.LOCAL, uuid.uuid4().hex)

    @property
    def is_local(self) -> bool:
        return self.kind is IdKind.LOCAL

    def sort_key(self) -> Tuple[int, int, int, str]:
        """Ascending key: remote before local, numeric remote ids by value."""
        if self.kind is IdKind.LOCAL:
            return (1, 0, 0, self.value)
        if self.value.isdigit():
            return (0, 0, int(self.value), "")
        return (0, 1, 0, self.value)

    def __str__(self) -> str:
        return self.value if self.kind is IdKind.REMOTE else f"local:{self.value}"


@dataclass(frozen=True)
class TableSpec:
    """Backend table and column names for one conversation kind."""
    table: str
    conversation_column: str
    author_column: str
    reply_column: str
    deleted_text: str


class ConversationKind(Enum):
    """The two kinds of threaded conversation."""
    DIRECT = "direct"
    DISCUSSION = "discussion"

    @property
    def spec(self) -> TableSpec:
        return _TABLES[self]

    @property
    def table(self) -> str:
        return self.spec.table


_TABLES: Dict[ConversationKind, TableSpec] = {
    ConversationKind.DIRECT: TableSpec(
        table="direct_messages",
        conversation_column="conversation_id",
        author_column="sender_id",
        reply_column="reply_to_message_id",
        deleted_text=DELETED_DM_TEXT,
    ),
    ConversationKind.DISCUSSION: TableSpec(
        table="messages",
        conversation_column="discussion_id",
        author_column="profile_id",
        reply_column="parent_id",
        deleted_text=DELETED_REPLY_TEXT,
    ),
}


class ChangeType(Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ThreadingMode(Enum):
    """How deep discussion replies may nest."""
    FLAT = "flat"
    ONE_LEVEL = "one_level"
    ARBITRARY = "arbitrary"


@dataclass
class Entity:
    """One direct message or discussion reply."""
    id: EntityId
    kind: ConversationKind
    conversation_id: str
    content: str
    created_at: datetime
    author_id: Optional[str] = field(default=None, repr=False)
    room_id: Optional[str] = None
    is_deleted: bool = False
    parent_id: Optional[str] = None
    reply_to_id: Optional[str] = None
    label: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.id.is_local

    @property
    def sort_key(self):
        return (self.created_at, self.id.sort_key())

    @property
    def display_content(self) -> str:
        """Content as rendered; soft-deleted entities keep their slot."""
        if self.is_deleted:
            return self.kind.spec.deleted_text
        return self.content

    @property
    def display_author(self) -> str:
        return self.label or ANONYMOUS_LABEL


@dataclass
class EntityDraft:
    """What the Composer asks the backend to insert."""
    kind: ConversationKind
    conversation_id: str
    content: str
    room_id: Optional[str] = None
    parent_id: Optional[str] = None
    reply_to_id: Optional[str] = None


@dataclass
class RemoteEvent:
    """
    A decoded realtime row change.

    DELETE pushes may carry only the primary key, so ``entity`` is None for
    them unless the backend sent the full old row.
    """
    change: ChangeType
    entity_id: EntityId
    entity: Optional[Entity] = None


@dataclass(frozen=True)
class AliasRecord:
    """Backend answer for one (discussion, author) pair."""
    is_originator: bool = False
    alias_number: Optional[int] = None

    @property
    def label(self) -> Optional[str]:
        if self.is_originator:
            return OP_LABEL
        if self.alias_number is not None:
            return str(self.alias_number)
        return None


def _optional_ts(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return parse_timestamp(value)


@dataclass
class ConversationSummary:
    """One row of the DM list."""
    conversation_id: str
    other_user_id: Optional[str] = field(default=None, repr=False)
    last_message_id: Optional[str] = None
    last_message: str = ""
    last_message_at: Optional[datetime] = None
    unread_count: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'ConversationSummary':
        last_id = row.get("last_message_id")
        return cls(
            conversation_id=str(row["conversation_id"]),
            other_user_id=row.get("other_user_id"),
            last_message_id=None if last_id is None else str(last_id),
            last_message=str(row.get("last_message") or ""),
            last_message_at=_optional_ts(row.get("last_message_at")),
            unread_count=int(row.get("unread_count") or 0),
        )

    def preview(self, max_len: int = 28) -> str:
        """Compact one-line preview of the last message."""
        preview = self.last_message.replace("\n", " ").strip()
        if len(preview) > max_len:
            preview = preview[:max_len] + "…"
        return preview


@dataclass
class Notification:
    """A notification addressed to the viewer."""
    id: str
    type: str
    created_at: datetime
    read_at: Optional[datetime] = None
    message_id: Optional[str] = None
    room_id: Optional[str] = None
    discussion_id: Optional[str] = None
    actor_label: Optional[str] = None
    request_id: Optional[str] = None
    conversation_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Notification':
        data = row.get("data") or {}
        message_id = row.get("message_id")
        return cls(
            id=str(row["id"]),
            type=str(row["type"]),
            created_at=parse_timestamp(row["created_at"]),
            read_at=_optional_ts(row.get("read_at")),
            message_id=None if message_id is None else str(message_id),
            room_id=row.get("room_id"),
            discussion_id=row.get("discussion_id"),
            actor_label=data.get("actor_label"),
            request_id=data.get("request_id"),
            conversation_id=data.get("conversation_id"),
        )

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def who(self) -> str:
        return self.actor_label or "Someone"

    @property
    def text(self) -> str:
        if self.type == "reply_to_you":
            return f"{self.who} replied to your message"
        if self.type == "reply_in_discussion":
            return f"{self.who} posted in a discussion you're in"
        if self.type == "dm_request":
            return "New chat request"
        if self.type == "dm_request_accepted":
            return "Chat request accepted"
        if self.type == "dm_received":
            return "New message"
        return "Notification"


@dataclass
class DMRequest:
    """A pending or decided request to open a direct conversation."""
    id: str
    requester_id: str = field(repr=False)
    requested_id: str = field(repr=False)
    status: str
    created_at: datetime
    decided_at: Optional[datetime] = None
    conversation_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'DMRequest':
        return cls(
            id=str(row["id"]),
            requester_id=str(row["requester_id"]),
            requested_id=str(row["requested_id"]),
            status=str(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            decided_at=_optional_ts(row.get("decided_at")),
            conversation_id=row.get("conversation_id"),
        )
