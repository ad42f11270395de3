"""
OpenOrbit API - FastAPI observer surface.

Read-only views of run history, session state and discovered adapters, plus
a WebSocket carrying the coalesced live view.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import List, Literal, Optional
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from adapters.registry import discover_adapters
from api.config import get_config
from api.database import BatchRunsRepo, init_database
from api.logging_config import log_request
from browser.screencast import ScreencastTransport
from campaigns.core.batch_runner import BatchJobRunner
from core.errors import ErrorCategory, OrbitError, error_to_response
from core.session_state import SessionStateTracker
from monitoring.live_stream import FeedTransport, LiveStream, LiveViewSnapshot

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

STATUS_BY_CODE = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.RESOLUTION_FAILED: 422,
}


# === Pydantic Models ===

class RunResponse(BaseModel):
    id: str
    kind: str
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    total: int
    processed_ok: int
    skipped: int
    errors: int
    status: str
    started_at: str
    finished_at: Optional[str] = None
    last_error: Optional[str] = None


class AdapterResponse(BaseModel):
    name: str
    version: str
    description: Optional[str] = None
    platform: Optional[str] = None


class LiveCommand(BaseModel):
    action: Literal["focus", "exit"]
    platform: Optional[str] = None


def create_app(
    runner: Optional[BatchJobRunner] = None,
    tracker: Optional[SessionStateTracker] = None,
    transport: Optional[FeedTransport] = None,
    db_path: Optional[str] = None,
    plugin_root: Optional[str] = None,
) -> FastAPI:
    """Build the API around the given components (defaults from config)."""
    config = get_config()
    db_path = db_path or config.DATABASE_PATH
    runner = runner or BatchJobRunner(BatchRunsRepo(db_path))
    tracker = tracker or SessionStateTracker()
    transport = transport or ScreencastTransport()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management."""
        logger.info("Starting OpenOrbit API...")
        await init_database(db_path)
        recovered = await runner.recover_interrupted()
        if recovered:
            logger.warning(f"Marked {recovered} interrupted run(s) as failed")
        logger.info("Database initialized")

        yield

        logger.info("Shutting down OpenOrbit API...")
        await app.state.live_stream.exit_live_mode()

    app = FastAPI(
        title="OpenOrbit API",
        description="Observer surface for automated sessions and batch runs",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if config.DEBUG else None,
        redoc_url="/redoc" if config.DEBUG else None,
    )

    app.state.runner = runner
    app.state.tracker = tracker
    app.state.transport = transport
    app.state.live_stream = LiveStream(
        transport,
        stale_timeout=config.LIVE_STALE_TIMEOUT_SECONDS,
        tick_interval=config.LIVE_TICK_SECONDS,
    )
    app.state.live_clients = 0

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # === Request Logging Middleware ===

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests."""
        start_time = datetime.now()
        response = await call_next(request)
        duration = (datetime.now() - start_time).total_seconds() * 1000
        log_request(request.method, request.url.path, response.status_code, duration)
        return response

    # === Error Handlers ===

    @app.exception_handler(OrbitError)
    async def orbit_error_handler(request: Request, exc: OrbitError):
        return JSONResponse(
            status_code=STATUS_BY_CODE.get(exc.code, 500),
            content=error_to_response(exc),
        )

    # === Endpoints ===

    @app.get("/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "running_kinds": runner.reservations.active_kinds(),
            "version": VERSION,
        }

    @app.get("/api/adapters", response_model=List[AdapterResponse])
    async def list_adapters():
        adapters = discover_adapters(plugin_root or config.PLUGIN_ROOT)
        return [adapter.to_dict() for adapter in adapters]

    @app.get("/api/runs", response_model=List[RunResponse])
    async def list_runs(limit: int = 20):
        if limit < 1 or limit > 500:
            raise HTTPException(status_code=422, detail="limit must be between 1 and 500")
        return await runner.list_recent(limit)

    @app.get("/api/runs/running/{kind}")
    async def get_running_run(kind: str):
        row = await runner.get_running(kind)
        return {
            "kind": kind,
            "running": runner.is_running(kind),
            "run_id": runner.get_current_run_id(kind),
            "run": row,
        }

    @app.get("/api/runs/{run_id}", response_model=RunResponse)
    async def get_run(run_id: str):
        row = await runner.get_run(run_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return row

    @app.get("/api/session")
    async def get_session():
        return tracker.snapshot()

    # === Live View ===

    @app.websocket("/ws/live")
    async def live_view(websocket: WebSocket):
        await websocket.accept()
        stream: LiveStream = app.state.live_stream
        outbox: asyncio.Queue = asyncio.Queue(maxsize=1)

        def enqueue(snapshot: LiveViewSnapshot):
            # Keep only the newest snapshot for a slow client
            if outbox.full():
                outbox.get_nowait()
            outbox.put_nowait(snapshot)

        async def sender():
            while True:
                snapshot = await outbox.get()
                await websocket.send_json(snapshot.to_dict())

        subscription = stream.add_observer(enqueue)
        app.state.live_clients += 1
        if not stream.live_mode:
            stream.enter_live_mode(tracker.platforms())
        enqueue(stream.snapshot())
        send_task = asyncio.create_task(sender())

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    command = LiveCommand(**json.loads(raw))
                except (ValidationError, TypeError, ValueError) as e:
                    await websocket.send_json({"success": False, "error": f"Invalid command: {e}"})
                    continue

                if command.action == "focus":
                    await stream.set_focused_platform(command.platform)
                else:
                    await stream.exit_live_mode()
        except WebSocketDisconnect:
            logger.info("[LiveView] Client disconnected")
        finally:
            send_task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await send_task
            subscription.unsubscribe()
            app.state.live_clients -= 1
            if app.state.live_clients == 0:
                await stream.exit_live_mode()

    return app


app = create_app()
