"""
Realtime row-change feed.
Speaks the Phoenix channel protocol used by the hosted backend's realtime
service: one websocket, one channel (topic) per subscription, a periodic
heartbeat, and automatic re-join of every open channel after a reconnect.
Delivery is at-least-once and unordered; missed pushes are not replayed.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from Silo.config import config
from Silo.core.client.interfaces import ChangeCallback
from Silo.core.client.utils.exceptions import RealtimeError
from Silo.core.logging import get_logger

logger = get_logger(__name__)

PHOENIX_TOPIC = "phoenix"


class PhoenixEvent:
    """Channel event names."""
    JOIN = "phx_join"
    LEAVE = "phx_leave"
    REPLY = "phx_reply"
    ERROR = "phx_error"
    CLOSE = "phx_close"
    HEARTBEAT = "heartbeat"
    POSTGRES_CHANGES = "postgres_changes"


@dataclass
class PhoenixMessage:
    """
    One Phoenix channel frame.

    Attributes:
        topic (str): Channel topic, ``realtime:<name>`` or ``phoenix``
        event (str): Event name
        payload (dict): Event payload
        ref (str, optional): Client reference echoed in replies
    """
    topic: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    ref: Optional[str] = None

    def serialize(self) -> str:
        return json.dumps({
            "topic": self.topic,
            "event": self.event,
            "payload": self.payload,
            "ref": self.ref,
        })

    @classmethod
    def deserialize(cls, data: str) -> 'PhoenixMessage':
        """
        Parse a frame.

        Raises:
            ValueError: not a JSON object with topic and event
        """
        obj = json.loads(data)
        if not isinstance(obj, dict) or "topic" not in obj or "event" not in obj:
            raise ValueError("Not a Phoenix frame")
        payload = obj.get("payload")
        return cls(
            topic=str(obj["topic"]),
            event=str(obj["event"]),
            payload=payload if isinstance(payload, dict) else {},
            ref=obj.get("ref"),
        )


def websocket_url(base_url: str, api_key: str) -> str:
    """Realtime endpoint for a project URL (http -> ws, https -> wss)."""
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    query = urlencode({"apikey": api_key, "vsn": "1.0.0"})
    return f"{base}/realtime/v1/websocket?{query}"


def join_message(
    topic: str,
    table: str,
    row_filter: Optional[str],
    ref: str,
    access_token: Optional[str] = None,
) -> PhoenixMessage:
    change = {"event": "*", "schema": "public", "table": table}
    if row_filter:
        change["filter"] = row_filter
    payload: Dict[str, Any] = {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [change],
        },
    }
    if access_token:
        payload["access_token"] = access_token
    return PhoenixMessage(topic, PhoenixEvent.JOIN, payload, ref)


def heartbeat_message(ref: str) -> PhoenixMessage:
    return PhoenixMessage(PHOENIX_TOPIC, PhoenixEvent.HEARTBEAT, {}, ref)


def leave_message(topic: str, ref: str) -> PhoenixMessage:
    return PhoenixMessage(topic, PhoenixEvent.LEAVE, {}, ref)


class RealtimeSubscription:
    """Handle returned by ``RealtimeClient.subscribe``."""

    def __init__(self, client: 'RealtimeClient', topic: str, table: str,
                 row_filter: Optional[str], callback: ChangeCallback):
        self._client = client
        self.topic = topic
        self.table = table
        self.filter = row_filter
        self.callback = callback
        self.active = True

    async def close(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._client._unsubscribe(self)


class RealtimeClient:
    """
    Websocket client implementing ``RealtimeFeed``.

    The connection is opened lazily by the first ``subscribe`` and kept
    alive with heartbeats; on disconnect it retries after
    ``reconnect_delay`` seconds and re-joins every open subscription.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        access_token: Optional[str] = None,
        *,
        heartbeat_interval: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
    ):
        self.url = websocket_url(
            base_url or config.SILO_URL,
            config.SILO_ANON_KEY if anon_key is None else anon_key,
        )
        self.access_token = access_token
        self.heartbeat_interval = (
            config.REALTIME_HEARTBEAT_SECONDS if heartbeat_interval is None else heartbeat_interval
        )
        self.reconnect_delay = (
            config.REALTIME_RECONNECT_DELAY_SECONDS if reconnect_delay is None else reconnect_delay
        )
        self._subscriptions: Dict[str, RealtimeSubscription] = {}
        self._refs = itertools.count(1)
        self._topics = itertools.count(1)
        self._websocket = None
        self._runner: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    @property
    def subscriptions(self) -> Dict[str, RealtimeSubscription]:
        return dict(self._subscriptions)

    def _next_ref(self) -> str:
        return str(next(self._refs))

    def set_access_token(self, token: Optional[str]) -> None:
        """Token sent with subsequent joins (after sign-in or refresh)."""
        self.access_token = token

    async def subscribe(self, table: str, filter: Optional[str], callback: ChangeCallback) -> RealtimeSubscription:
        if self._closed:
            raise RealtimeError("Realtime client is closed")
        topic = f"realtime:{table}:{next(self._topics)}"
        subscription = RealtimeSubscription(self, topic, table, filter, callback)
        self._subscriptions[topic] = subscription
        if self._websocket is not None:
            await self._join(self._websocket, subscription)
        self._ensure_running()
        logger.debug("Subscribed %s (%s %s)", topic, table, filter or "*")
        return subscription

    async def _unsubscribe(self, subscription: RealtimeSubscription) -> None:
        self._subscriptions.pop(subscription.topic, None)
        websocket = self._websocket
        if websocket is None:
            return
        try:
            await websocket.send(leave_message(subscription.topic, self._next_ref()).serialize())
        except ConnectionClosed:
            pass

    def _ensure_running(self) -> None:
        if self._closed or (self._runner is not None and not self._runner.done()):
            return
        self._runner = asyncio.get_running_loop().create_task(self._run())

    async def _join(self, websocket, subscription: RealtimeSubscription) -> None:
        message = join_message(
            subscription.topic, subscription.table, subscription.filter,
            self._next_ref(), self.access_token,
        )
        await websocket.send(message.serialize())

    async def _heartbeat(self, websocket) -> None:
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                await websocket.send(heartbeat_message(self._next_ref()).serialize())
        except ConnectionClosed:
            # the receive loop notices the same close and reconnects
            return

    async def _run(self) -> None:
        while not self._closed:
            heartbeat: Optional[asyncio.Task] = None
            try:
                async with websockets.connect(self.url) as websocket:
                    self._websocket = websocket
                    logger.info("Realtime connected")
                    for subscription in list(self._subscriptions.values()):
                        await self._join(websocket, subscription)
                    heartbeat = asyncio.get_running_loop().create_task(self._heartbeat(websocket))
                    async for raw in websocket:
                        await self.dispatch(raw)
            except ConnectionClosed:
                logger.warning("Realtime connection closed")
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.warning("Realtime not available: %s", type(e).__name__)
            finally:
                self._websocket = None
                if heartbeat is not None:
                    heartbeat.cancel()
                    await asyncio.gather(heartbeat, return_exceptions=True)
            if self._closed:
                break
            logger.info("Realtime reconnecting in %s seconds", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def dispatch(self, raw: Any) -> None:
        """Route one incoming frame to its subscription's callback."""
        try:
            message = PhoenixMessage.deserialize(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed realtime frame")
            return

        if message.event == PhoenixEvent.POSTGRES_CHANGES:
            subscription = self._subscriptions.get(message.topic)
            data = message.payload.get("data")
            if subscription is None or not subscription.active or not isinstance(data, Mapping):
                return
            try:
                await subscription.callback(data)
            except Exception:
                logger.exception("Realtime callback for %s failed", message.topic)
        elif message.event == PhoenixEvent.REPLY:
            if message.payload.get("status") == "error":
                logger.warning("Realtime %s rejected: %s", message.topic, message.payload.get("response"))
        elif message.event in (PhoenixEvent.ERROR, PhoenixEvent.CLOSE):
            if message.topic in self._subscriptions:
                logger.warning("Realtime channel %s: %s", message.topic, message.event)

    async def close(self) -> None:
        """Drop every subscription and stop reconnecting."""
        self._closed = True
        for subscription in list(self._subscriptions.values()):
            subscription.active = False
        self._subscriptions.clear()
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass


__all__ = [
    'PhoenixEvent',
    'PhoenixMessage',
    'RealtimeClient',
    'RealtimeSubscription',
    'heartbeat_message',
    'join_message',
    'leave_message',
    'websocket_url',
]
