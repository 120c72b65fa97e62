"""FastAPI application entrypoint and HTTP endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from src.core.credentials import find_connection_string, validate_connection_string
from src.core.errors import SubmissionError
from src.core.hub import SSE_KEEPALIVE, EventHub, Subscriber, sse_frame
from src.core.logging import configure_logging
from src.core.runtime import Runtime, build_runtime
from src.core.settings import get_settings
from src.models.task_models import SubmitRequest, TaskResponse

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """FastAPI lifespan hook: configure logging, build runtime state, drain on exit."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    if getattr(application.state, "runtime", None) is None:
        application.state.runtime = build_runtime(settings)
    log.info("api_startup_complete")
    yield
    runtime: Runtime = application.state.runtime
    await runtime.shutdown()
    application.state.runtime = None
    log.info("api_shutdown_complete")


app = FastAPI(title="ATXP Image Demo API", version="1.0.0", lifespan=lifespan)

_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Cache-Control", _settings.CONNECTION_STRING_HEADER],
)


def _runtime(request: Request) -> Runtime:
    runtime: Runtime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return runtime


@app.post("/submit", status_code=201, response_model=TaskResponse)
async def submit(payload: SubmitRequest, request: Request) -> TaskResponse:
    """Create a task and start generating its image in the background."""
    runtime = _runtime(request)
    connection_string = find_connection_string(request.headers, runtime.settings)
    try:
        task = await runtime.orchestrator.submit(payload.text, connection_string)
    except SubmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    return TaskResponse.from_task(task)


@app.get("/tasks", response_model=list[TaskResponse])
async def list_tasks(request: Request) -> list[TaskResponse]:
    runtime = _runtime(request)
    return [TaskResponse.from_task(task) for task in runtime.store.list_all()]


@app.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, request: Request) -> TaskResponse:
    task = _runtime(request).store.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskResponse.from_task(task)


async def event_stream(
    request: Request,
    hub: EventHub,
    subscriber: Subscriber,
    *,
    heartbeat_s: float | None = None,
) -> AsyncIterator[str]:
    """Relay one subscriber's frames as SSE until the client or the hub goes away."""
    try:
        async for frame in subscriber.frames(heartbeat_s=heartbeat_s):
            if await request.is_disconnected():
                break
            yield SSE_KEEPALIVE if frame is None else sse_frame(frame)
    finally:
        hub.unsubscribe(subscriber)


@app.get("/progress")
async def progress(request: Request) -> StreamingResponse:
    """Long-lived Server-Sent-Events stream of stage and payment events."""
    runtime = _runtime(request)
    subscriber = runtime.hub.subscribe()
    return StreamingResponse(
        event_stream(
            request,
            runtime.hub,
            subscriber,
            heartbeat_s=runtime.settings.HEARTBEAT_INTERVAL_S,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@app.get("/validate-connection")
async def validate_connection(request: Request) -> JSONResponse:
    """Check that a usable ATXP connection string reaches the backend."""
    is_valid, error = validate_connection_string(request.headers, _runtime(request).settings)
    if is_valid:
        return JSONResponse(content={"valid": True, "message": "Valid ATXP account connection string found"})
    return JSONResponse(status_code=400, content={"valid": False, "error": error})


@app.get("/health")
async def health(request: Request) -> dict[str, Any]:
    runtime = _runtime(request)
    return {
        "status": "ok",
        "subscribers": runtime.hub.subscriber_count,
        "activePollers": len(runtime.background),
    }


# Serve the built frontend last so it never shadows the API routes.
if _settings.FRONTEND_BUILD_DIR and Path(_settings.FRONTEND_BUILD_DIR).is_dir():
    app.mount("/", StaticFiles(directory=_settings.FRONTEND_BUILD_DIR, html=True), name="frontend")
