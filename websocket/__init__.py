"""
WebSocket module for the simulation playback backend.

Pushes frame and session updates to viewers over WebSocket connections.
"""

from .manager import (
    WebSocketManager,
    WebSocketMessage,
    MessageType,
    ws_manager,
    playback_channel,
    notify_playback_frame,
    notify_playback_state,
)

__all__ = [
    "WebSocketManager",
    "WebSocketMessage",
    "MessageType",
    "ws_manager",
    "playback_channel",
    "notify_playback_frame",
    "notify_playback_state",
]
