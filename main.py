"""
FastAPI backend for simulation timeline playback.

Runs a production simulation through the simulation backend, turns its event
history into a frame sequence and replays it at a configurable speed. Frames
are pushed to viewers over WebSocket; controls are plain REST calls.
"""

import os

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from api.app_config import get_settings
from api.shared.logger import get_logger, setup_logging

setup_logging(get_settings().log_level)
logger = get_logger(__name__)

from api.playback import playback_manager
from api.simulation import router as simulation_router
from api.system import log_error
from api.system import router as system_router
from websocket import MessageType, WebSocketMessage, playback_channel, ws_manager

app = FastAPI(
    title="Simulation Playback API",
    description="Replay production simulation runs frame by frame",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)


# ============= Exception Handlers for Error Logging =============


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Log HTTP exceptions and return JSON response."""
    # 502 from the simulation backend is included here
    if exc.status_code >= 500:
        log_error(
            endpoint=str(request.url.path),
            message=str(exc.detail),
            level="error",
            details=f"Status code: {exc.status_code}",
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and return JSON response."""
    log_error(
        endpoint=str(request.url.path),
        message=str(exc),
        level="critical",
        details=f"Unhandled exception: {type(exc).__name__}",
        exc=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(system_router, prefix="/api", tags=["system"])
app.include_router(simulation_router, prefix="/api")


# ============= Lifecycle Events =============


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    logger.info("Simulation playback backend starting...")
    logger.info(
        "Simulation backend: %s (tick %.0f ms, max speed %dx)",
        settings.backend_url, settings.base_tick_ms, settings.max_speed,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel every session timer before the loop stops."""
    await playback_manager.shutdown()
    logger.info("Playback sessions closed")


# ============= WebSocket Endpoints =============


async def _serve_messages(websocket: WebSocket, label: str) -> None:
    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("%s WebSocket error: %s", label, e)
        await ws_manager.disconnect(websocket)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = None):
    """
    Main WebSocket endpoint for real-time updates.

    Clients subscribe to ``playback:{session_id}`` channels.

    Message format (JSON):
    {
        "type": "subscribe" | "unsubscribe" | "ping",
        "channel": "channel_name",
        "data": {"channel": "playback:..."}
    }
    """
    await ws_manager.connect(websocket, client_id)
    await _serve_messages(websocket, "Main")


@app.websocket("/ws/playback/{session_id}")
async def playback_websocket_endpoint(websocket: WebSocket, session_id: str):
    """
    WebSocket endpoint for one playback session.

    Automatically subscribes to the session channel and sends the current
    view, then streams ``playback_frame`` and ``playback_state`` messages.
    """
    await ws_manager.connect(websocket, f"playback-{session_id}")
    await ws_manager.subscribe(websocket, playback_channel(session_id))

    session = playback_manager.get_session(session_id)
    if session is not None:
        await ws_manager.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.PLAYBACK_STATE,
                channel=playback_channel(session_id),
                data=session.view(),
            ),
        )

    await _serve_messages(websocket, "Playback")


@app.get("/api/ws/stats")
async def get_websocket_stats():
    """Get WebSocket connection statistics."""
    return {
        "total_connections": ws_manager.get_connection_count(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Simulation playback backend server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("SIMVIZ_PORT", 8000)),
        help="Port to run the server on (default: 8000 or SIMVIZ_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().log_level.lower(),
    )
