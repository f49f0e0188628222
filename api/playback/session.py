"""
Playback sessions.

A ``PlaybackSession`` is the server-side owner of one viewer's playback: it
fetches a simulation run, normalizes it into a ``Timeline``, holds the cursor
and the tick scheduler, and renders read-only views for REST and WebSocket
clients.

Every installed timeline gets a new generation number. The cursor carries the
generation it belongs to and every tick is checked against it, so discarding
or replacing a timeline atomically invalidates all work started for the old
one.
"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from ..app_config import AppSettings, get_settings
from ..backend_client import BackendClient, SimulationFetchError
from ..shared.logger import get_logger
from .cursor import CursorState, cursor_for, empty_cursor
from .models import Frame, Timeline
from .normalizer import build_name_lookup, extract_history_rows, normalize
from .projections import StatusClassifier, dashboard_metrics, node_states, resource_tables, table_rows
from .scheduler import PlaybackScheduler

logger = get_logger(__name__)


class SessionMode(str, Enum):
    """Which screen the session is on."""

    CONFIG = "config"
    LOADING = "loading"
    PLAYBACK = "playback"


class SessionNotice(str, Enum):
    """User-visible notices."""

    NO_VISIBLE_STEPS = "no_visible_steps"
    FETCH_FAILED = "fetch_failed"


class SessionEvent(str, Enum):
    """What changed, for notifiers."""

    FRAME = "frame"
    STATE = "state"


Notifier = Callable[["PlaybackSession", SessionEvent], Awaitable[None]]


def _mapping_or_empty(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


class PlaybackSession:
    """Owns the frame sequence, cursor and tick timer of one viewer."""

    def __init__(
        self,
        session_id: str,
        client: BackendClient,
        settings: Optional[AppSettings] = None,
        notifier: Optional[Notifier] = None,
        classifier: Optional[StatusClassifier] = None,
    ):
        self.id = session_id
        self.client = client
        self.settings = settings or get_settings()
        self.classifier = classifier
        self.created_at = datetime.now()

        self.mode = SessionMode.CONFIG
        self.notice: Optional[SessionNotice] = None
        self.error: Optional[str] = None

        self.catalog_id: Optional[int] = None
        self.target_quantity: Optional[int] = None
        self.product_name: Optional[str] = None
        self.metadata: Dict[str, Any] = {}
        self.chart_image: Optional[str] = None
        self.catalogs: List[Dict[str, Any]] = []

        self._generation = 0
        self._request_token = 0
        self.timeline = Timeline(generation=self._generation)
        self.cursor: CursorState = empty_cursor(self._generation, self.settings.max_speed)

        self.scheduler = PlaybackScheduler(self.settings.base_tick_ms, name=f"session-{session_id}")
        self._scheduled_speed: Optional[int] = None
        self._notifier = notifier

        self._lookup_catalog_id: Optional[int] = None
        self._name_lookup: Dict[str, str] = {}

    # ============= Read side =============

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current_frame(self) -> Optional[Frame]:
        if self.cursor.generation != self.timeline.generation:
            return None
        return self.timeline.frame_at(self.cursor.current_index)

    def view(self) -> Dict[str, Any]:
        """Everything a client needs to render the current position."""
        frame = self.current_frame
        details = self.timeline.details
        return {
            "session_id": self.id,
            "mode": self.mode.value,
            "notice": self.notice.value if self.notice else None,
            "error": self.error,
            "catalog_id": self.catalog_id,
            "target_quantity": self.target_quantity,
            "product_name": self.product_name,
            "cursor": self.cursor.to_dict(),
            "progress_percent": self.cursor.progress_percent,
            "frame": frame.to_dict() if frame else None,
            "node_states": {eid: ns.to_dict() for eid, ns in node_states(frame, self.classifier).items()},
            "metrics": dashboard_metrics(frame, self.metadata, details, self.product_name),
            "table": table_rows(frame, details),
            "resource_tables": resource_tables(frame),
            "details": {eid: d.to_dict() for eid, d in details.items()},
            "chart_image_base64": self.chart_image,
        }

    def summary(self) -> Dict[str, Any]:
        """Short description for session listings."""
        return {
            "session_id": self.id,
            "mode": self.mode.value,
            "catalog_id": self.catalog_id,
            "frame_count": self.cursor.frame_count,
            "playing": self.cursor.playing,
            "created_at": self.created_at.isoformat(),
        }

    # ============= Catalogs & names =============

    async def load_catalogs(self) -> List[Dict[str, Any]]:
        """Fetch the catalog list (product names for the header)."""
        self.catalogs = await self.client.fetch_catalog_list()
        return self.catalogs

    def _catalog_name(self, catalog_id: int) -> Optional[str]:
        for entry in self.catalogs:
            if str(entry.get("id")) == str(catalog_id):
                return entry.get("name")
        return None

    async def _name_lookup_for(self, catalog_id: int) -> Dict[str, str]:
        # Same catalog as the last successful lookup: no refetch
        if catalog_id == self._lookup_catalog_id:
            return self._name_lookup
        detail = await self.client.fetch_diagram_detail(catalog_id)
        self._name_lookup = build_name_lookup(detail)
        self._lookup_catalog_id = catalog_id
        return self._name_lookup

    # ============= Run lifecycle =============

    async def start_run(self, catalog_id: int, target_quantity: int) -> bool:
        """Fetch a simulation run and install its timeline.

        The previous timeline and its timer are discarded before the fetch.
        If another run is started (or the session is sent back to
        configuration) while this fetch is in flight, this result is dropped.

        Returns:
            True if the timeline was installed, False if the request was superseded.

        Raises:
            ValueError: If target_quantity is not positive
            SimulationFetchError: If the backend request failed
        """
        if target_quantity <= 0:
            raise ValueError("Target quantity must be positive")

        speed = self.cursor.speed_multiplier
        self._discard_timeline()
        self._request_token += 1
        token = self._request_token
        self.mode = SessionMode.LOADING
        self.notice = None
        self.error = None
        self.catalog_id = catalog_id
        self.target_quantity = target_quantity
        await self._notify(SessionEvent.STATE)

        try:
            payload, lookup = await asyncio.gather(
                self.client.fetch_simulation_run(catalog_id, target_quantity),
                self._name_lookup_for(catalog_id),
            )
        except SimulationFetchError as e:
            if token != self._request_token:
                logger.info("Session %s: ignoring failure of superseded run: %s", self.id, e)
                return False
            self.mode = SessionMode.CONFIG
            self.notice = SessionNotice.FETCH_FAILED
            self.error = str(e)
            await self._notify(SessionEvent.STATE)
            raise

        if token != self._request_token:
            logger.info("Session %s: dropping superseded run for catalog %s", self.id, catalog_id)
            return False

        if not isinstance(payload, Mapping):
            logger.warning("Session %s: run payload is not an object: %s", self.id, type(payload).__name__)
            payload = {}
        results = _mapping_or_empty(payload.get("results"))
        # Frame-shaped runs put their timeline next to results, not inside it
        rows = extract_history_rows(results) or extract_history_rows(payload)
        history = normalize(rows, lookup, results.get("detalles_procesos"))

        self.metadata = dict(_mapping_or_empty(payload.get("simulation_metadata")))
        self.chart_image = results.get("chart_base64")
        self.product_name = payload.get("modelo") or self._catalog_name(catalog_id)

        self._generation += 1
        self.timeline = Timeline(
            frames=tuple(history.frames),
            details=history.details,
            generation=self._generation,
        )
        cursor = cursor_for(
            len(history.frames),
            self._generation,
            speed_multiplier=speed,
            max_speed=self.settings.max_speed,
        )
        self.mode = SessionMode.PLAYBACK
        if history.is_empty:
            self.notice = SessionNotice.NO_VISIBLE_STEPS
            logger.info("Session %s: run for catalog %s produced no visible steps", self.id, catalog_id)
        else:
            cursor = cursor.play()
            logger.info(
                "Session %s: installed %d frames for %d entities (generation %d)",
                self.id, len(history.frames), len(history.details), self._generation,
            )

        self._set_cursor(cursor)
        await self._notify(SessionEvent.STATE)
        return True

    def _discard_timeline(self) -> None:
        self.scheduler.cancel()
        self._scheduled_speed = None
        self._generation += 1
        self.timeline = Timeline(generation=self._generation)
        self.cursor = empty_cursor(self._generation, self.settings.max_speed)

    async def back_to_config(self) -> None:
        """Stop playback, drop the timeline and return to configuration."""
        self._request_token += 1
        self._discard_timeline()
        self.mode = SessionMode.CONFIG
        self.notice = None
        self.error = None
        self.metadata = {}
        self.chart_image = None
        await self._notify(SessionEvent.STATE)

    async def close(self) -> None:
        """Cancel all work of this session (viewer navigated away)."""
        self._request_token += 1
        self._discard_timeline()
        await self.scheduler.shutdown()

    # ============= Playback controls =============

    async def play(self) -> CursorState:
        return await self._transition(self.cursor.play())

    async def pause(self) -> CursorState:
        return await self._transition(self.cursor.pause())

    async def toggle(self) -> CursorState:
        return await self._transition(self.cursor.toggle())

    async def reset(self) -> CursorState:
        return await self._transition(self.cursor.reset())

    async def seek(self, percentage: float) -> CursorState:
        return await self._transition(self.cursor.seek(percentage))

    async def cycle_speed(self) -> CursorState:
        return await self._transition(self.cursor.cycle_speed())

    async def _transition(self, cursor: CursorState) -> CursorState:
        self._set_cursor(cursor)
        await self._notify(SessionEvent.STATE)
        return self.cursor

    def _set_cursor(self, cursor: CursorState) -> None:
        self.cursor = cursor
        self._sync_scheduler()

    def _sync_scheduler(self) -> None:
        cursor = self.cursor
        if not cursor.playing or cursor.is_empty:
            self.scheduler.cancel()
            self._scheduled_speed = None
            return

        if (
            self.scheduler.is_running
            and self.scheduler.generation == cursor.generation
            and self._scheduled_speed == cursor.speed_multiplier
        ):
            return

        self.scheduler.start(cursor.generation, cursor.speed_multiplier, self._on_tick)
        self._scheduled_speed = cursor.speed_multiplier

    async def _on_tick(self, generation: int) -> bool:
        if generation != self.cursor.generation or generation != self.timeline.generation:
            logger.debug("Session %s: dropping stale tick (generation %d, live %d)", self.id, generation, self._generation)
            return False
        if not self.cursor.playing:
            return False

        self.cursor = self.cursor.advance()
        await self._notify(SessionEvent.FRAME)
        if not self.cursor.playing:
            self._scheduled_speed = None
            await self._notify(SessionEvent.STATE)
            return False
        return True

    async def _notify(self, event: SessionEvent) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier(self, event)
        except Exception as e:
            logger.error("Session %s: notifier failed: %s", self.id, e)


async def broadcast_session(session: PlaybackSession, event: SessionEvent) -> None:
    """Default notifier: push the session view to its WebSocket channel."""
    # Import here to avoid circular imports
    from websocket import notify_playback_frame, notify_playback_state

    if event == SessionEvent.FRAME:
        await notify_playback_frame(session.id, session.view())
    else:
        await notify_playback_state(session.id, session.view())


class PlaybackSessionManager:
    """Registry of playback sessions."""

    def __init__(
        self,
        client: Optional[BackendClient] = None,
        settings: Optional[AppSettings] = None,
        notifier: Optional[Notifier] = broadcast_session,
    ):
        self._client = client
        self._settings = settings
        self.notifier = notifier
        self._sessions: Dict[str, PlaybackSession] = {}

    @property
    def settings(self) -> AppSettings:
        return self._settings or get_settings()

    @property
    def client(self) -> BackendClient:
        if self._client is None:
            self._client = BackendClient(self.settings)
        return self._client

    @settings.setter
    def settings(self, value: Optional[AppSettings]) -> None:
        self._settings = value

    @client.setter
    def client(self, value: Optional[BackendClient]) -> None:
        self._client = value

    def create_session(self) -> PlaybackSession:
        session_id = f"playback_{uuid.uuid4().hex[:8]}"
        session = PlaybackSession(
            session_id,
            self.client,
            settings=self.settings,
            notifier=self.notifier,
        )
        self._sessions[session_id] = session
        logger.debug("Created playback session %s", session_id)
        return session

    def get_session(self, session_id: str) -> Optional[PlaybackSession]:
        return self._sessions.get(session_id)

    def list_sessions(self) -> List[PlaybackSession]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)

    async def close_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def shutdown(self) -> None:
        for session_id in list(self._sessions):
            await self.close_session(session_id)


# Global session manager instance
playback_manager = PlaybackSessionManager()
