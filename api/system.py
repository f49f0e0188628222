"""
System API routes for the simulation playback backend.

Health, runtime information and a small in-memory log of server errors.
"""

import platform
import sys
import traceback
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Optional

from fastapi import APIRouter

from .app_config import get_settings
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

MAX_ERROR_LOG = 100

_error_log: Deque[Dict[str, Any]] = deque(maxlen=MAX_ERROR_LOG)


def log_error(
    endpoint: str,
    message: str,
    level: str = "error",
    details: Optional[str] = None,
    exc: Optional[BaseException] = None,
) -> None:
    """Record a server-side error and log it."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "endpoint": endpoint,
        "message": message,
        "level": level,
        "details": details,
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)) if exc else None,
    }
    _error_log.append(entry)
    if level == "critical":
        logger.critical("%s: %s (%s)", endpoint, message, details)
    else:
        logger.error("%s: %s (%s)", endpoint, message, details)


def _get_package_versions() -> Dict[str, str]:
    from importlib.metadata import PackageNotFoundError, version

    packages = {}
    for name in ("fastapi", "uvicorn", "pydantic", "httpx", "orjson", "platformdirs"):
        try:
            packages[name] = version(name)
        except PackageNotFoundError:
            pass
    return packages


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    from .playback import playback_manager

    return {
        "status": "healthy",
        "message": "simulation playback backend is running",
        "sessions": len(playback_manager.list_sessions()),
    }


@router.get("/system/info")
async def system_info():
    """Get system and environment information."""
    return {
        "python": {
            "version": sys.version,
            "platform": sys.platform,
        },
        "system": {
            "os": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "settings": get_settings().to_dict(),
        "packages": _get_package_versions(),
    }


@router.get("/system/errors")
async def recent_errors(limit: int = 20):
    """Most recent server errors, newest first."""
    entries = list(_error_log)[-max(limit, 0):] if limit > 0 else []
    return {"errors": list(reversed(entries)), "total": len(_error_log)}
