"""
FastAPI application for the read-only patrol API.

The app is built around already-running patrol components, so it owns no
resources and has no startup/shutdown work of its own.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.broadcast import EventBroadcaster
from api.models import (
    ErrorResponse,
    HealthResponse,
    RecordListResponse,
    RecordResponse,
    StatusResponse,
)
from patrol import __version__
from patrol.errors import StoreError
from patrol.patrol_service import PatrolService
from patrol.ports import FingerprintStore

logger = structlog.get_logger(__name__)


def create_app(
    store: FingerprintStore,
    broadcaster: Optional[EventBroadcaster] = None,
    service: Optional[PatrolService] = None,
    debug: bool = False
) -> FastAPI:
    """
    Build the API application.

    Args:
        store: Fingerprint store to serve records from
        broadcaster: Change event broadcaster backing /ws
        service: Patrol service backing /status
        debug: Include exception details in 500 responses

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Page Patrol API",
        description="Read-only view of patrolled pages, their fingerprints and live change events.",
        version=__version__
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc: HTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail,
                status_code=exc.status_code
            ).model_dump(),
            headers=exc.headers
        )

    @app.exception_handler(StoreError)
    async def store_exception_handler(request, exc: StoreError):
        """Handle fingerprint store failures."""
        logger.error("Store failure while serving request", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ErrorResponse(
                error="Fingerprint store unavailable",
                detail=str(exc) if debug else None,
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE
            ).model_dump()
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        try:
            await store.read_all()
            store_status = "healthy"
        except StoreError as e:
            logger.error("Health check failed", error=str(e))
            store_status = "unhealthy"

        return HealthResponse(
            status="healthy" if store_status == "healthy" else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=__version__,
            store_status=store_status
        )

    @app.get("/records", response_model=RecordListResponse, tags=["Records"])
    async def get_records():
        """List the stored fingerprint record of every observed target."""
        records = await store.read_all()
        items = [RecordResponse.from_record(records[key]) for key in sorted(records)]
        return RecordListResponse(records=items, total=len(items))

    @app.get("/records/{target_id:path}", response_model=RecordResponse, tags=["Records"])
    async def get_record(target_id: str):
        """
        Get the stored record of one target.

        - **target_id**: Target identifier (may be a URL)
        """
        record = await store.read(target_id)
        if record is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No record for target '{target_id}'"
            )
        return RecordResponse.from_record(record)

    @app.get("/status", response_model=StatusResponse, tags=["Status"])
    async def get_status():
        """Scheduling state of the patrol service."""
        if service is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Patrol service not attached"
            )
        return service.get_status()

    @app.websocket("/ws")
    async def change_events(websocket: WebSocket):
        """Stream change events as {"id", "url", "timestamp"} messages."""
        if broadcaster is None:
            await websocket.close(code=1011)
            return

        await websocket.accept()
        await broadcaster.register(websocket)
        try:
            while True:
                # inbound messages are ignored; this just waits for disconnect
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.unregister(websocket)

    return app
