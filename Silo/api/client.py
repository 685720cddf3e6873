"""
HTTP client for the hosted Silo backend.
Implements the ``Backend`` protocol over the PostgREST/RPC endpoints.
Uses singleton pattern for aiohttp.ClientSession to enable connection pooling.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import aiohttp
import jwt

from Silo.config import config
from Silo.core.client.models import (
    AliasRecord,
    ConversationKind,
    ConversationSummary,
    DMRequest,
    Entity,
    EntityDraft,
    EntityId,
    Notification,
)
from Silo.core.client.realtime import decode_notification, decode_row
from Silo.core.client.utils.exceptions import (
    AuthenticationError,
    BackendError,
    RealtimeDecodeError,
)
from Silo.core.logging import get_logger
from Silo.core.logging.utils import LogTimer

logger = get_logger(__name__)

_SELECT = {
    ConversationKind.DIRECT: "id,conversation_id,sender_id,content,reply_to_message_id,created_at,is_deleted",
    ConversationKind.DISCUSSION: "id,discussion_id,room_id,profile_id,content,created_at,is_deleted,parent_id",
}
_NOTIFICATION_SELECT = "id,type,user_id,actor_id,message_id,room_id,discussion_id,data,created_at,read_at"
_REQUEST_SELECT = "id,requester_id,requested_id,status,created_at,decided_at,conversation_id"


class SessionManager:
    """
    Singleton manager for aiohttp.ClientSession.

    Provides a shared session across all API client instances,
    enabling connection pooling and reducing overhead.
    """

    _instance: Optional['SessionManager'] = None
    _session: Optional[aiohttp.ClientSession] = None
    _lock: Optional[asyncio.Lock] = None

    def __new__(cls) -> 'SessionManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            SessionManager._lock = asyncio.Lock()
        return self._lock

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            async with self._get_lock():
                if self._session is None or self._session.closed:
                    connector = aiohttp.TCPConnector(
                        limit=0,
                        limit_per_host=0,
                        ttl_dns_cache=300,
                        enable_cleanup_closed=True
                    )
                    timeout = aiohttp.ClientTimeout(total=60, connect=10)
                    SessionManager._session = aiohttp.ClientSession(
                        connector=connector,
                        timeout=timeout,
                        trust_env=False
                    )
        return self._session

    async def close(self) -> None:
        """Close the shared session."""
        async with self._get_lock():
            if self._session and not self._session.closed:
                await self._session.close()
            SessionManager._session = None
        SessionManager._lock = None

    @property
    def is_closed(self) -> bool:
        """Check if the session is closed."""
        return self._session is None or self._session.closed


_session_manager = SessionManager()


def viewer_from_token(token: str) -> str:
    """
    Read the viewer id (``sub`` claim) from an access token.

    The signature is checked by the backend on every call, not here.

    Raises:
        AuthenticationError: the token is malformed or has no subject
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise AuthenticationError("Invalid access token") from e
    subject = claims.get("sub")
    if not subject:
        raise AuthenticationError("Access token has no subject")
    return str(subject)


def in_list(values: Sequence[Any]) -> str:
    """PostgREST ``in.(...)`` filter value."""
    return "in.(" + ",".join(str(v) for v in values) + ")"


def _row_id(value: Optional[str]) -> Any:
    if value is not None and value.isdigit():
        return int(value)
    return value


def _single(body: Any) -> Optional[Dict[str, Any]]:
    if isinstance(body, list):
        return body[0] if body else None
    if isinstance(body, dict):
        return body
    return None


def _count(body: Any) -> int:
    if isinstance(body, bool) or not isinstance(body, (int, float)):
        return 0
    return int(body)


def _error_details(status: int, body: Any) -> Dict[str, Any]:
    details: Dict[str, Any] = {"status": status}
    if isinstance(body, dict):
        for key in ("code", "hint", "details"):
            if body.get(key) is not None:
                details[key] = body[key]
    return details


class SiloAPIClient:
    """
    Backend client for Silo.

    Uses a shared aiohttp.ClientSession for all requests,
    enabling connection pooling and reducing TCP handshake overhead.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        access_token: Optional[str] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url (str): Backend project URL
            anon_key (str): Public API key sent with every request
            access_token (str): Signed-in user's access token, if any
        """
        self.base_url = (base_url or config.SILO_URL).rstrip("/")
        self.anon_key = config.SILO_ANON_KEY if anon_key is None else anon_key
        self.token: Optional[str] = None
        self.viewer_id: Optional[str] = None
        if access_token:
            self.set_session(access_token)

    def set_session(self, access_token: str) -> str:
        """Adopt an access token; returns the viewer id it belongs to."""
        self.viewer_id = viewer_from_token(access_token)
        self.token = access_token
        return self.viewer_id

    def clear_session(self) -> None:
        self.token = None
        self.viewer_id = None

    def is_authenticated(self) -> bool:
        """
        Check if the client has a session.

        Returns:
            bool: True if authenticated, False otherwise
        """
        return self.token is not None

    def _require_viewer(self) -> str:
        if self.viewer_id is None:
            raise AuthenticationError("Not signed in")
        return self.viewer_id

    def build_headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.token or self.anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get the shared aiohttp session."""
        return await _session_manager.get_session()

    async def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Mapping[str, str]] = None,
        data: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        """
        Make an HTTP request to the backend.

        Args:
            endpoint (str): Path below the project URL
            method (str): HTTP method to use
            params (dict): Query parameters (PostgREST filters)
            data: JSON body
            prefer (str): ``Prefer`` header value

        Returns:
            Decoded JSON body, or None for an empty response

        Raises:
            BackendError: transport failure or a non-2xx status
        """
        url = f"{self.base_url}{endpoint}"
        with LogTimer(f"{method} {endpoint}", logger):
            try:
                session = await self._get_session()
                async with session.request(
                    method=method,
                    url=url,
                    params=dict(params) if params else None,
                    json=data,
                    headers=self.build_headers(prefer),
                ) as response:
                    text = await response.text()
                    try:
                        body = await response.json(content_type=None) if text.strip() else None
                    except ValueError:
                        body = text
                    if response.status >= 400:
                        message = body.get("message") if isinstance(body, dict) else None
                        raise BackendError(
                            message or f"Request failed with status {response.status}",
                            _error_details(response.status, body),
                        )
                    return body
            except aiohttp.ClientError as e:
                raise BackendError(f"Request failed: {e}", {"endpoint": endpoint}) from e
            except asyncio.TimeoutError as e:
                raise BackendError("Request timed out", {"endpoint": endpoint}) from e

    async def _rpc(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return await self._make_request(f"/rest/v1/rpc/{name}", method="POST", data=args or {})

    def _decode_rows(self, kind: ConversationKind, rows: Any) -> List[Entity]:
        entities = []
        for row in rows or []:
            try:
                entities.append(decode_row(kind, row))
            except RealtimeDecodeError as e:
                logger.warning("Skipping malformed %s row: %s", kind.table, e.message)
        return entities

    async def fetch_entities(
        self,
        kind: ConversationKind,
        conversation_id: str,
        *,
        ascending: bool = True,
        limit: int = 100,
        before: Optional[datetime] = None,
    ) -> List[Entity]:
        spec = kind.spec
        params = {
            "select": _SELECT[kind],
            spec.conversation_column: f"eq.{conversation_id}",
            "order": f"created_at.{'asc' if ascending else 'desc'}",
            "limit": str(limit),
        }
        if before is not None:
            params["created_at"] = f"lt.{before.isoformat()}"
        rows = await self._make_request(f"/rest/v1/{kind.table}", params=params)
        return self._decode_rows(kind, rows)

    async def insert_entity(self, draft: EntityDraft) -> Entity:
        if draft.kind is ConversationKind.DIRECT:
            body = await self._rpc("send_dm", {
                "p_conversation_id": draft.conversation_id,
                "p_content": draft.content,
                "p_reply_to_message_id": _row_id(draft.reply_to_id),
            })
        else:
            body = await self._make_request(
                "/rest/v1/messages",
                method="POST",
                params={"select": _SELECT[ConversationKind.DISCUSSION]},
                data={
                    "room_id": draft.room_id,
                    "discussion_id": draft.conversation_id,
                    "content": draft.content,
                    "parent_id": _row_id(draft.parent_id),
                },
                prefer="return=representation",
            )
        row = _single(body)
        if row is None:
            raise BackendError("Insert returned no row", {"table": draft.kind.table})
        try:
            return decode_row(draft.kind, row)
        except RealtimeDecodeError as e:
            raise BackendError("Insert returned a malformed row", e.details) from e

    async def mark_deleted(self, kind: ConversationKind, entity_id: EntityId) -> None:
        await self._make_request(
            f"/rest/v1/{kind.table}",
            method="PATCH",
            params={"id": f"eq.{entity_id.value}"},
            data={"is_deleted": True},
        )

    async def resolve_alias(self, conversation_id: str, author_id: str) -> Optional[AliasRecord]:
        rows = await self._make_request("/rest/v1/discussion_aliases", params={
            "select": "is_op,alias",
            "discussion_id": f"eq.{conversation_id}",
            "user_id": f"eq.{author_id}",
            "limit": "1",
        })
        row = _single(rows)
        if row is None:
            return None
        alias = row.get("alias")
        return AliasRecord(
            is_originator=bool(row.get("is_op")),
            alias_number=int(alias) if alias is not None else None,
        )

    async def total_unread(self) -> int:
        return _count(await self._rpc("total_dm_unread"))

    async def unread_notifications(self) -> int:
        return _count(await self._rpc("get_unread_notifications_count"))

    async def mark_read(self, conversation_id: str, viewer_id: str, at: datetime) -> None:
        await self._make_request(
            "/rest/v1/direct_members",
            method="PATCH",
            params={
                "conversation_id": f"eq.{conversation_id}",
                "user_id": f"eq.{viewer_id}",
            },
            data={"last_read_at": at.isoformat()},
        )

    async def list_conversations(self) -> List[ConversationSummary]:
        rows = await self._rpc("list_my_dms")
        return [ConversationSummary.from_row(row) for row in rows or []]

    async def leave_conversation(self, conversation_id: str) -> None:
        await self._rpc("leave_dm", {"p_conversation_id": conversation_id})

    async def fetch_notifications(self, limit: int, types: Sequence[str]) -> List[Notification]:
        rows = await self._make_request("/rest/v1/notifications", params={
            "select": _NOTIFICATION_SELECT,
            "user_id": f"eq.{self._require_viewer()}",
            "type": in_list(types),
            "order": "created_at.desc",
            "limit": str(limit),
        })
        notifications = []
        for row in rows or []:
            try:
                notifications.append(decode_notification(row))
            except RealtimeDecodeError as e:
                logger.warning("Skipping malformed notification: %s", e.message)
        return notifications

    async def mark_notifications_read(self, notification_ids: Sequence[str], at: datetime) -> None:
        if not notification_ids:
            return
        await self._make_request(
            "/rest/v1/notifications",
            method="PATCH",
            params={"id": in_list(notification_ids)},
            data={"read_at": at.isoformat()},
        )

    async def list_dm_requests(self, viewer_id: str) -> List[DMRequest]:
        rows = await self._make_request("/rest/v1/direct_requests", params={
            "select": _REQUEST_SELECT,
            "status": "eq.pending",
            "or": f"(requested_id.eq.{viewer_id},requester_id.eq.{viewer_id})",
            "order": "created_at.desc",
        })
        return [DMRequest.from_row(row) for row in rows or []]

    async def respond_dm_request(self, request_id: str, action: str) -> Optional[str]:
        body = await self._rpc("respond_dm_request", {
            "p_request_id": request_id,
            "p_action": action,
        })
        row = _single(body)
        conversation_id = row.get("conversation_id") if row else None
        return str(conversation_id) if conversation_id else None

    async def report_user(
        self,
        target_user_id: str,
        reason: str,
        details: str,
        context: Dict[str, Any],
    ) -> None:
        await self._rpc("report_user", {
            "p_target_user_id": target_user_id,
            "p_reason": reason,
            "p_details": details,
            "p_context": context,
        })

    async def log_activity(self, activity_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if self.viewer_id is None:
            return
        await self._make_request("/rest/v1/activity", method="POST", data={
            "user_id": self.viewer_id,
            "type": activity_type,
            "payload": payload,
        })


async def close_session() -> None:
    """
    Close the shared aiohttp session.

    Should be called when the application is shutting down
    to properly release resources.
    """
    await _session_manager.close()


__all__ = ['SiloAPIClient', 'SessionManager', 'close_session', 'viewer_from_token', 'in_list']
