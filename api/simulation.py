"""
Simulation playback API endpoints.

This module provides endpoints for:
- Listing the products a simulation can be run for
- Creating, inspecting and closing playback sessions
- Running a simulation and replaying it frame by frame
- Playback controls (play/pause/toggle/reset/seek/speed)

Frame updates are pushed on the ``playback:<session_id>`` WebSocket channel;
every endpoint here also returns the resulting session view.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .backend_client import SimulationFetchError
from .playback import PlaybackSession, playback_manager
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/playback", tags=["playback"])


# ============================================================================
# Pydantic Models
# ============================================================================

class CatalogEntry(BaseModel):
    """A product that can be simulated."""
    id: Any
    name: str = ""


class CatalogListResponse(BaseModel):
    catalogs: List[CatalogEntry]
    total: int


class RunRequest(BaseModel):
    """Request body for starting a simulation run."""
    catalog_id: int = Field(..., description="Catalog (product) to simulate")
    target_quantity: int = Field(..., gt=0, description="Units to produce")


class SeekRequest(BaseModel):
    """Request body for seeking within the timeline."""
    percentage: float = Field(..., ge=0, le=100, description="Target position, 0-100")


class SessionSummary(BaseModel):
    session_id: str
    mode: str
    catalog_id: Optional[int] = None
    frame_count: int
    playing: bool
    created_at: str


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
    total: int


# ============================================================================
# Helpers
# ============================================================================

def _get_session(session_id: str) -> PlaybackSession:
    session = playback_manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Playback session '{session_id}' not found")
    return session


def _fetch_failed(e: SimulationFetchError) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail=f"Could not load the simulation: {e}",
    )


# ============================================================================
# Catalogs
# ============================================================================

@router.get("/catalogs", response_model=CatalogListResponse)
async def list_catalogs():
    """List the products available in the simulation backend."""
    try:
        catalogs = await playback_manager.client.fetch_catalog_list()
    except SimulationFetchError as e:
        raise _fetch_failed(e)
    return CatalogListResponse(
        catalogs=[CatalogEntry(**entry) for entry in catalogs],
        total=len(catalogs),
    )


# ============================================================================
# Sessions
# ============================================================================

@router.post("/sessions")
async def create_session() -> Dict[str, Any]:
    """Create a playback session in configuration mode."""
    session = playback_manager.create_session()
    try:
        await session.load_catalogs()
    except SimulationFetchError as e:
        # Only the header product name depends on it
        logger.warning("Session %s: catalog list unavailable: %s", session.id, e)
    return session.view()


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions():
    """List open playback sessions, newest first."""
    summaries = [SessionSummary(**s.summary()) for s in playback_manager.list_sessions()]
    return SessionListResponse(sessions=summaries, total=len(summaries))


@router.get("/sessions/{session_id}")
async def get_session(session_id: str) -> Dict[str, Any]:
    """Current view of a session (position, diagram, dashboard, table)."""
    return _get_session(session_id).view()


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str):
    """Close a session and cancel its timer."""
    if not await playback_manager.close_session(session_id):
        raise HTTPException(status_code=404, detail=f"Playback session '{session_id}' not found")
    return {"success": True, "session_id": session_id}


# ============================================================================
# Run lifecycle
# ============================================================================

@router.post("/sessions/{session_id}/run")
async def start_run(session_id: str, request: RunRequest) -> Dict[str, Any]:
    """Run the simulation and start playback from the first frame.

    Returns 502 when the simulation backend fails; the session is then back
    in configuration mode with no frames.
    """
    session = _get_session(session_id)
    try:
        await session.start_run(request.catalog_id, request.target_quantity)
    except SimulationFetchError as e:
        raise _fetch_failed(e)
    return session.view()


@router.post("/sessions/{session_id}/back")
async def back_to_config(session_id: str) -> Dict[str, Any]:
    """Stop playback and return to configuration."""
    session = _get_session(session_id)
    await session.back_to_config()
    return session.view()


# ============================================================================
# Playback controls
# ============================================================================

@router.post("/sessions/{session_id}/play")
async def play(session_id: str) -> Dict[str, Any]:
    session = _get_session(session_id)
    await session.play()
    return session.view()


@router.post("/sessions/{session_id}/pause")
async def pause(session_id: str) -> Dict[str, Any]:
    session = _get_session(session_id)
    await session.pause()
    return session.view()


@router.post("/sessions/{session_id}/toggle")
async def toggle(session_id: str) -> Dict[str, Any]:
    session = _get_session(session_id)
    await session.toggle()
    return session.view()


@router.post("/sessions/{session_id}/reset")
async def reset(session_id: str) -> Dict[str, Any]:
    """Back to the first frame, paused."""
    session = _get_session(session_id)
    await session.reset()
    return session.view()


@router.post("/sessions/{session_id}/seek")
async def seek(session_id: str, request: SeekRequest) -> Dict[str, Any]:
    """Jump to a percentage of the timeline; does not change play/pause."""
    session = _get_session(session_id)
    await session.seek(request.percentage)
    return session.view()


@router.post("/sessions/{session_id}/speed")
async def cycle_speed(session_id: str) -> Dict[str, Any]:
    """Advance to the next speed multiplier (1x, 2x, 4x, ... wrapping to 1x)."""
    session = _get_session(session_id)
    await session.cycle_speed()
    return session.view()
