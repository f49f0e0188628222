"""
Simulation timeline playback.

- models.py: raw events, entity states, frames and timelines
- normalizer.py: raw history rows -> forward-filled frame sequence
- cursor.py: immutable playback cursor and its transitions
- scheduler.py: single fixed-period tick task per session
- projections.py: status classification, diagram/dashboard/table views
- session.py: per-viewer session owning all of the above
"""

from .cursor import CursorState, cursor_for, empty_cursor
from .models import EntityDetail, EntityState, Frame, RawEvent, Timeline, VisualStatus
from .normalizer import NormalizedHistory, build_name_lookup, extract_history_rows, normalize
from .projections import (
    StatusClassifier,
    classify_status,
    dashboard_metrics,
    node_states,
    table_rows,
)
from .scheduler import PlaybackScheduler
from .session import (
    PlaybackSession,
    PlaybackSessionManager,
    SessionEvent,
    SessionMode,
    SessionNotice,
    playback_manager,
)

__all__ = [
    "CursorState",
    "cursor_for",
    "empty_cursor",
    "EntityDetail",
    "EntityState",
    "Frame",
    "RawEvent",
    "Timeline",
    "VisualStatus",
    "NormalizedHistory",
    "build_name_lookup",
    "extract_history_rows",
    "normalize",
    "StatusClassifier",
    "classify_status",
    "dashboard_metrics",
    "node_states",
    "table_rows",
    "PlaybackScheduler",
    "PlaybackSession",
    "PlaybackSessionManager",
    "SessionEvent",
    "SessionMode",
    "SessionNotice",
    "playback_manager",
]
