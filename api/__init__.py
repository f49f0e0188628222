"""
API package for the simulation playback backend.

This package provides the REST API endpoints for:
- Simulation playback sessions and controls (simulation.py)
- System health and info (system.py)

and the engine behind them:
- Backend collaborator client (backend_client.py)
- Settings (app_config.py)
- Timeline playback (playback/)
"""

from .app_config import AppSettings, get_settings
from .backend_client import BackendClient, SimulationFetchError
from .playback import PlaybackSession, playback_manager

__all__ = [
    "AppSettings",
    "get_settings",
    "BackendClient",
    "SimulationFetchError",
    "PlaybackSession",
    "playback_manager",
]
