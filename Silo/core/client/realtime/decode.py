"""
Decoding of backend rows and realtime row-change pushes.

Every row that enters the client, from a bulk read, an insert response or a
realtime push, passes through the pydantic models below before it becomes an
``Entity``. Malformed input raises ``RealtimeDecodeError``; nothing loosely
shaped reaches the store.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..models.data import ChangeType, ConversationKind, Entity, EntityId, Notification, RemoteEvent
from ..utils.exceptions import RealtimeDecodeError
from ..utils.labels import normalize_label
from ..utils.timefmt import parse_timestamp

RowId = Union[StrictInt, StrictStr]


class _RowBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RowId
    content: Optional[str] = ""
    created_at: datetime
    is_deleted: Optional[bool] = False


class DirectMessageRow(_RowBase):
    conversation_id: StrictStr
    sender_id: Optional[StrictStr] = None
    reply_to_message_id: Optional[RowId] = None

    def to_entity(self) -> Entity:
        return Entity(
            id=EntityId.remote(self.id),
            kind=ConversationKind.DIRECT,
            conversation_id=self.conversation_id,
            content=self.content or "",
            created_at=parse_timestamp(self.created_at),
            author_id=self.sender_id,
            is_deleted=bool(self.is_deleted),
            reply_to_id=_opt_str(self.reply_to_message_id),
        )


class ReplyRow(_RowBase):
    discussion_id: StrictStr
    room_id: Optional[StrictStr] = None
    profile_id: Optional[StrictStr] = None
    parent_id: Optional[RowId] = None
    display_name: Optional[str] = None

    def to_entity(self) -> Entity:
        return Entity(
            id=EntityId.remote(self.id),
            kind=ConversationKind.DISCUSSION,
            conversation_id=self.discussion_id,
            content=self.content or "",
            created_at=parse_timestamp(self.created_at),
            author_id=self.profile_id,
            room_id=self.room_id,
            is_deleted=bool(self.is_deleted),
            parent_id=_opt_str(self.parent_id),
            label=normalize_label(self.display_name),
        )


class NotificationRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RowId
    type: StrictStr
    created_at: datetime
    read_at: Optional[datetime] = None
    message_id: Optional[RowId] = None
    room_id: Optional[StrictStr] = None
    discussion_id: Optional[StrictStr] = None
    data: Optional[Dict[str, Any]] = None

    def to_notification(self) -> Notification:
        data = self.data or {}
        return Notification(
            id=str(self.id),
            type=self.type,
            created_at=parse_timestamp(self.created_at),
            read_at=parse_timestamp(self.read_at) if self.read_at else None,
            message_id=_opt_str(self.message_id),
            room_id=self.room_id,
            discussion_id=self.discussion_id,
            actor_label=data.get("actor_label"),
            request_id=_opt_str(data.get("request_id")),
            conversation_id=_opt_str(data.get("conversation_id")),
        )


_ROW_MODELS: Dict[ConversationKind, Type[_RowBase]] = {
    ConversationKind.DIRECT: DirectMessageRow,
    ConversationKind.DISCUSSION: ReplyRow,
}


class _ChangeBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    table: str
    db_schema: str = Field(default="public", alias="schema")
    commit_timestamp: Optional[str] = None


class InsertChange(_ChangeBase):
    type: Literal["INSERT"]
    record: Dict[str, Any]


class UpdateChange(_ChangeBase):
    type: Literal["UPDATE"]
    record: Dict[str, Any]
    old_record: Dict[str, Any] = Field(default_factory=dict)


class DeleteChange(_ChangeBase):
    type: Literal["DELETE"]
    old_record: Dict[str, Any]


ChangePayload = Annotated[
    Union[InsertChange, UpdateChange, DeleteChange],
    Field(discriminator="type"),
]
_change_adapter = TypeAdapter(ChangePayload)


def _opt_str(value) -> Optional[str]:
    return None if value is None else str(value)


def decode_row(kind: ConversationKind, row: Mapping[str, Any]) -> Entity:
    """
    Validate one backend row and convert it to an ``Entity``.

    Raises:
        RealtimeDecodeError: the row does not have the shape of ``kind``
    """
    model = _ROW_MODELS[kind]
    try:
        parsed = model.model_validate(dict(row))
    except PydanticValidationError as e:
        raise RealtimeDecodeError(
            f"Malformed {kind.table} row",
            {"errors": e.error_count()},
        ) from e
    return parsed.to_entity()


def decode_change(kind: ConversationKind, data: Mapping[str, Any]) -> RemoteEvent:
    """
    Validate a ``postgres_changes`` push and normalize it into a ``RemoteEvent``.

    Accepts the ``eventType`` spelling some clients use for ``type``.

    Raises:
        RealtimeDecodeError: unknown change type, wrong table or bad row
    """
    if not isinstance(data, Mapping):
        raise RealtimeDecodeError("Realtime payload is not an object")
    payload = dict(data)
    if "type" not in payload and "eventType" in payload:
        payload["type"] = payload.pop("eventType")
    if "record" not in payload and "new" in payload:
        payload["record"] = payload["new"]
    if "old_record" not in payload and "old" in payload:
        payload["old_record"] = payload["old"]

    try:
        change = _change_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise RealtimeDecodeError(
            "Malformed realtime payload",
            {"errors": e.error_count()},
        ) from e

    if change.table != kind.table:
        raise RealtimeDecodeError(
            "Realtime payload for unexpected table",
            {"expected": kind.table, "got": change.table},
        )

    if isinstance(change, DeleteChange):
        old_id = change.old_record.get("id")
        if old_id is None or isinstance(old_id, bool):
            raise RealtimeDecodeError("DELETE payload without primary key")
        entity = None
        if kind.spec.conversation_column in change.old_record:
            entity = decode_row(kind, change.old_record)
        return RemoteEvent(ChangeType.DELETE, EntityId.remote(old_id), entity)

    entity = decode_row(kind, change.record)
    return RemoteEvent(ChangeType(change.type), entity.id, entity)


def decode_notification(data: Mapping[str, Any]) -> Notification:
    """
    Decode a notification, either a bare row or an INSERT push carrying one.

    Raises:
        RealtimeDecodeError: malformed row or a push for another table
    """
    if not isinstance(data, Mapping):
        raise RealtimeDecodeError("Notification payload is not an object")
    row: Any = data
    if "table" in data:
        if data["table"] != "notifications":
            raise RealtimeDecodeError(
                "Realtime payload for unexpected table",
                {"expected": "notifications", "got": data["table"]},
            )
        row = data.get("record", data.get("new"))
    try:
        return NotificationRow.model_validate(row).to_notification()
    except PydanticValidationError as e:
        raise RealtimeDecodeError(
            "Malformed notifications row",
            {"errors": e.error_count()},
        ) from e


__all__ = [
    'DirectMessageRow',
    'ReplyRow',
    'NotificationRow',
    'decode_notification',
    'InsertChange',
    'UpdateChange',
    'DeleteChange',
    'decode_row',
    'decode_change',
]
