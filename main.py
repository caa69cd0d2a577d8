"""
FastAPI backend for the bitwise workbench.

This module provides the web API for inspecting, editing, transforming and
analysing bit strings, running declarative strategies over them and
replaying the stored results step by step.
"""

import asyncio
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from api.shared.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

from api.analysis import router as analysis_router
from api.anomalies import router as anomalies_router
from api.files import router as files_router
from api.jobs import job_manager
from api.player import router as player_router
from api.playground import router as playground_router
from api.presets import router as presets_router
from api.results import router as results_router
from api.strategies import router as strategies_router
from api.system import log_error
from api.system import router as system_router
from websocket import ws_manager

app = FastAPI(
    title="Bitwise Workbench API",
    description="API for inspecting, transforming and analysing bit strings",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)


# ============= Exception Handlers for Error Logging =============


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Log HTTP exceptions and return JSON response."""
    # Only 5xx errors go to the error log
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


# Include API routes
app.include_router(system_router, prefix="/api", tags=["system"])
app.include_router(files_router, prefix="/api", tags=["files"])
app.include_router(analysis_router, prefix="/api", tags=["analysis"])
app.include_router(playground_router, prefix="/api", tags=["playground"])
app.include_router(presets_router, prefix="/api", tags=["presets"])
app.include_router(anomalies_router, prefix="/api", tags=["anomalies"])
app.include_router(strategies_router, prefix="/api", tags=["strategies"])
app.include_router(results_router, prefix="/api", tags=["results"])
app.include_router(player_router, prefix="/api", tags=["player"])


# ============= Startup Events =============


@app.on_event("startup")
async def startup_event():
    """Bind job notifications to the running loop."""
    job_manager.bind_loop(asyncio.get_running_loop())
    logger.info("Bitwise workbench starting...")


@app.on_event("shutdown")
async def shutdown_event():
    job_manager.bind_loop(None)


# ============= WebSocket Endpoints =============


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = None):
    """
    Main WebSocket endpoint for real-time updates.

    Clients subscribe to ``job:{job_id}`` channels for job progress and
    strategy steps.

    Message format (JSON):
    {
        "type": "subscribe" | "unsubscribe" | "ping",
        "channel": "channel_name",
        "data": {}
    }
    """
    await ws_manager.connect(websocket, client_id)

    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await ws_manager.disconnect(websocket)


@app.websocket("/ws/job/{job_id}")
async def job_websocket_endpoint(websocket: WebSocket, job_id: str):
    """
    WebSocket endpoint for job-specific updates.

    Automatically subscribes to the job channel on connection.
    """
    await ws_manager.connect(websocket, f"job-{job_id}")
    await ws_manager.subscribe(websocket, f"job:{job_id}")

    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("Job WebSocket error: %s", e)
        await ws_manager.disconnect(websocket)


@app.get("/api/ws/stats")
async def get_websocket_stats(channel: Optional[str] = None):
    """Get WebSocket connection statistics, optionally for one channel."""
    stats = {"total_connections": ws_manager.get_connection_count()}
    if channel:
        stats["channel"] = channel
        stats["subscribers"] = ws_manager.get_channel_subscribers(channel)
    return stats


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Bitwise workbench backend server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("BITWISE_PORT", 8000)),
        help="Port to run the server on (default: 8000 or BITWISE_PORT env var)",
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

    try:
        uvicorn.run(
            "main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level="info",
        )
    finally:
        job_manager.shutdown(wait=False)
