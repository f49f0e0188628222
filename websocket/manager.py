"""
WebSocket connection manager for the simulation playback backend.

Viewers subscribe to ``playback:<session_id>`` channels and receive a message
every time the cursor moves (``playback_frame``) or the session changes in any
other way (``playback_state``).
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from api.shared.logger import get_logger

logger = get_logger(__name__)


class MessageType(str, Enum):
    """Types of WebSocket messages."""

    # Playback messages
    PLAYBACK_FRAME = "playback_frame"
    PLAYBACK_STATE = "playback_state"

    # System messages
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


def playback_channel(session_id: str) -> str:
    """Channel name of a playback session."""
    return f"playback:{session_id}"


@dataclass
class WebSocketMessage:
    """Represents a WebSocket message."""

    type: MessageType
    channel: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now().isoformat()

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value,
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
        })

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("Message must be a JSON object")
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise ValueError("Message data must be a JSON object")
        return cls(
            type=MessageType(data.get("type", "error")),
            channel=data.get("channel", ""),
            data=payload,
            timestamp=data.get("timestamp"),
        )


class WebSocketManager:
    """
    Manages WebSocket connections for playback updates.

    Supports channel-based subscriptions for targeted message delivery.
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()

        # channel -> subscribed sockets
        self._channels: Dict[str, Set[WebSocket]] = {}

        # socket -> client id, connect time, subscriptions
        self._connection_info: Dict[WebSocket, Dict[str, Any]] = {}

        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        """
        Accept a new WebSocket connection.

        Args:
            websocket: The WebSocket connection
            client_id: Optional client identifier
        """
        await websocket.accept()

        async with self._lock:
            self._connections.add(websocket)
            self._connection_info[websocket] = {
                "client_id": client_id,
                "connected_at": datetime.now().isoformat(),
                "subscriptions": set(),
            }

        await self.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.CONNECTED,
                channel="system",
                data={
                    "client_id": client_id,
                    "message": "Connected to simulation playback server",
                },
            ),
        )

    def _drop_from_channel(self, websocket: WebSocket, channel: str) -> None:
        # Caller holds the lock; empty channels are removed
        subscribers = self._channels.get(channel)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self._channels[channel]

    def _subscriptions_of(self, websocket: WebSocket) -> Set[str]:
        info = self._connection_info.get(websocket)
        return info["subscriptions"] if info else set()

    async def disconnect(self, websocket: WebSocket) -> None:
        """
        Forget a connection and all of its channel subscriptions.

        Args:
            websocket: The WebSocket connection
        """
        async with self._lock:
            for channel in list(self._subscriptions_of(websocket)):
                self._drop_from_channel(websocket, channel)
            self._connections.discard(websocket)
            self._connection_info.pop(websocket, None)

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        """
        Subscribe a connection to a channel and acknowledge it.

        Args:
            websocket: The WebSocket connection
            channel: Channel name (e.g. "playback:<session_id>")
        """
        async with self._lock:
            self._channels.setdefault(channel, set()).add(websocket)
            self._subscriptions_of(websocket).add(channel)
        await self._acknowledge(websocket, MessageType.SUBSCRIBED, channel)

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        """
        Unsubscribe a connection from a channel and acknowledge it.

        Args:
            websocket: The WebSocket connection
            channel: Channel name
        """
        async with self._lock:
            self._drop_from_channel(websocket, channel)
            self._subscriptions_of(websocket).discard(channel)
        await self._acknowledge(websocket, MessageType.UNSUBSCRIBED, channel)

    async def _acknowledge(self, websocket: WebSocket, kind: MessageType, channel: str) -> None:
        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=kind, channel=channel, data={"channel": channel}),
        )

    async def send_to_connection(
        self,
        websocket: WebSocket,
        message: WebSocketMessage,
    ) -> bool:
        """
        Send a message to a specific connection.

        A connection that fails to receive is disconnected.

        Returns:
            True if sent successfully, False otherwise
        """
        return await self._send_all([websocket], message.to_json()) == 1

    async def broadcast_to_channel(
        self,
        channel: str,
        message: WebSocketMessage,
    ) -> int:
        """
        Broadcast a message to all subscribers of a channel.

        Args:
            channel: Target channel
            message: Message to send; serialized once for all subscribers

        Returns:
            Number of connections that received the message
        """
        async with self._lock:
            subscribers = list(self._channels.get(channel, ()))
        if not subscribers:
            return 0
        return await self._send_all(subscribers, message.to_json())

    async def _send_all(self, sockets: List[WebSocket], payload: str) -> int:
        delivered = 0
        dead: List[WebSocket] = []
        for websocket in sockets:
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping WebSocket connection after failed send: %s", e)
                dead.append(websocket)
        for websocket in dead:
            await self.disconnect(websocket)
        return delivered

    def get_channel_subscribers(self, channel: str) -> int:
        """Number of connections subscribed to a channel."""
        return len(self._channels.get(channel, set()))

    def get_connection_count(self) -> int:
        """Get the total number of active connections."""
        return len(self._connections)

    async def handle_message(
        self,
        websocket: WebSocket,
        message_text: str,
    ) -> Optional[WebSocketMessage]:
        """
        Handle an incoming WebSocket message.

        Args:
            websocket: Source WebSocket connection
            message_text: Raw message text

        Returns:
            Response message or None
        """
        try:
            message = WebSocketMessage.from_json(message_text)
        except (json.JSONDecodeError, ValueError) as e:
            return _system_message(MessageType.ERROR, {"error": f"Invalid message format: {e}"})

        if message.type == MessageType.PING:
            return _system_message(MessageType.PONG, {"timestamp": datetime.now().isoformat()})

        handler = {
            MessageType.SUBSCRIBE: self.subscribe,
            MessageType.UNSUBSCRIBE: self.unsubscribe,
        }.get(message.type)
        channel = message.data.get("channel")
        if handler is not None and channel:
            await handler(websocket, str(channel))
        return None


def _system_message(kind: MessageType, data: Dict[str, Any]) -> WebSocketMessage:
    return WebSocketMessage(type=kind, channel="system", data=data)


# Global WebSocket manager instance
ws_manager = WebSocketManager()


# ============= Helper Functions for Playback Updates =============


async def _publish(kind: MessageType, session_id: str, view: Dict[str, Any]) -> int:
    channel = playback_channel(session_id)
    return await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(type=kind, channel=channel, data=view),
    )


async def notify_playback_frame(session_id: str, view: Dict[str, Any]) -> None:
    """
    Notify subscribers that the cursor moved to a new frame.

    Args:
        session_id: Playback session identifier
        view: Session view at the new position
    """
    await _publish(MessageType.PLAYBACK_FRAME, session_id, view)


async def notify_playback_state(session_id: str, view: Dict[str, Any]) -> None:
    """
    Notify subscribers of a session change other than a tick
    (run installed, control applied, fetch failed, back to config).

    Args:
        session_id: Playback session identifier
        view: Current session view
    """
    await _publish(MessageType.PLAYBACK_STATE, session_id, view)
