"""HTTP, Server-Sent Events and WebSocket broker for PairAgent sessions."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from pairagent import __version__
from pairagent.orchestrator import RunOutcome
from pairagent.schemas import (
    CreateSessionRequest,
    CreateSessionResponse,
    ErrorMessage,
    ErrorResponse,
    HealthResponse,
    InstructorMessage,
    PermissionLevel,
    PermissionUpdateRequest,
    RunResponse,
    SendMessageRequest,
    ServerMessage,
    SessionDetail,
    SessionInfo,
    SessionStatus,
    ToolUseMessage,
)
from pairagent.services import Services, get_services
from pairagent.session.registry import (
    SessionEndedError,
    SessionError,
    SessionLockedError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="PairAgent Broker",
    description="Sessions, runs and live events for Instructor/Worker coding sessions",
    version=__version__,
)

# Background runs started from WebSocket input
_background_runs: set[asyncio.Task[Any]] = set()


def require_token(
    authorization: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> None:
    """Check the bearer token when one is configured."""
    expected = services.settings.auth_token
    if not expected:
        return
    if authorization != f"Bearer {expected}":
        raise HTTPException(status_code=401, detail="Invalid or missing token")


# --- Runs ---


def _check_runnable(services: Services, session_id: str) -> None:
    """Raise the matching SessionError before any event is appended."""
    session = services.registry.load(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    if session.status == SessionStatus.ENDED:
        raise SessionEndedError(session_id)
    if services.orchestrator.is_running(session_id) or services.registry.is_locked(session_id):
        raise SessionLockedError(session_id)


async def _run_with_message(services: Services, session_id: str, content: str) -> RunResponse:
    """Append a user message and run to completion, collecting every message."""
    _check_runnable(services, session_id)
    services.registry.add_user_message(session_id, content)

    collected: list[ServerMessage] = []
    outcome = await services.orchestrator.run(session_id, observer=collected.append)

    session = services.registry.load(session_id)
    instructor_texts = [m.content for m in collected if isinstance(m, InstructorMessage)]
    tool_calls = [{"tool": m.tool, "input": m.input} for m in collected if isinstance(m, ToolUseMessage)]
    return RunResponse(
        session_id=session_id,
        outcome=outcome.value,
        status=session.status if session else SessionStatus.ENDED,
        round_count=session.round_count if session else 0,
        response=instructor_texts[-1] if instructor_texts else "",
        tool_calls=tool_calls,
        messages=collected,
    )


async def _background_run(services: Services, session_id: str) -> RunOutcome | None:
    try:
        return await services.orchestrator.run(session_id)
    except SessionError as e:
        services.broadcaster.emit(session_id, ErrorMessage(message=str(e)))
        return None


# --- HTTP Endpoints ---


@app.post(
    "/api/sessions",
    response_model=CreateSessionResponse,
    status_code=201,
    dependencies=[Depends(require_token)],
)
async def create_session(
    request: CreateSessionRequest,
    services: Services = Depends(get_services),
) -> CreateSessionResponse:
    """Create a session, optionally running a first instruction."""
    work_dir = os.path.abspath(os.path.expanduser(request.work_dir or str(services.settings.work_dir)))
    if not os.path.isdir(work_dir):
        raise HTTPException(status_code=400, detail=f"Working directory does not exist: {work_dir}")

    session = services.registry.create(work_dir, model=request.model)
    run = None
    if request.instruction:
        run = await _run_with_message(services, session.session_id, request.instruction)
    return CreateSessionResponse(session=session.info(), run=run)


@app.get("/api/sessions", response_model=list[SessionInfo], dependencies=[Depends(require_token)])
async def list_sessions(services: Services = Depends(get_services)) -> list[SessionInfo]:
    """List sessions, most recently active first."""
    return services.registry.list_sessions()


@app.get("/api/sessions/{session_id}", response_model=SessionDetail, dependencies=[Depends(require_token)])
async def get_session(session_id: str, services: Services = Depends(get_services)) -> SessionDetail:
    """Get a session with its history."""
    return services.registry.require(session_id).detail()


@app.delete("/api/sessions/{session_id}", dependencies=[Depends(require_token)])
async def end_session(
    session_id: str,
    purge: bool = Query(default=False, description="Also delete the event log"),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """End a session; with purge, delete it entirely."""
    if not services.registry.exists(session_id):
        raise SessionNotFoundError(session_id)

    services.orchestrator.interrupt(session_id)
    services.orchestrator.forget_worker(session_id)
    if purge:
        services.registry.delete(session_id)
    else:
        session = services.registry.load(session_id)
        if session is not None and session.status != SessionStatus.ENDED:
            services.registry.end(session_id)
    return {"session_id": session_id, "ended": True, "purged": purge}


@app.post(
    "/api/sessions/{session_id}/messages",
    response_model=RunResponse,
    dependencies=[Depends(require_token)],
)
async def send_message(
    session_id: str,
    request: SendMessageRequest,
    services: Services = Depends(get_services),
) -> RunResponse:
    """Send a message and wait for the run to finish."""
    return await _run_with_message(services, session_id, request.content)


# --- Server-Sent Events ---


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def _sse_stream(
    services: Services,
    session_id: str,
    queue: asyncio.Queue[ServerMessage],
    run: asyncio.Task[RunOutcome | None],
) -> AsyncIterator[str]:
    """Relay broadcast messages until the run finishes, then send an end event."""
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, run}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                message = getter.result()
                yield _sse(message.type, message.model_dump(mode="json"))
                continue

            getter.cancel()
            while not queue.empty():
                message = queue.get_nowait()
                yield _sse(message.type, message.model_dump(mode="json"))
            outcome = run.result()
            yield _sse("end", {"session_id": session_id, "outcome": outcome.value if outcome else None})
            return
    finally:
        services.broadcaster.unsubscribe(session_id, queue)


def _start_streamed_run(services: Services, session_id: str, content: str) -> StreamingResponse:
    """Append a user message, start the run and stream its messages as SSE."""
    _check_runnable(services, session_id)
    queue = services.broadcaster.subscribe(session_id)
    try:
        services.registry.add_user_message(session_id, content)
    except Exception:
        services.broadcaster.unsubscribe(session_id, queue)
        raise

    run = asyncio.create_task(_background_run(services, session_id))
    _background_runs.add(run)
    run.add_done_callback(_background_runs.discard)
    return StreamingResponse(
        _sse_stream(services, session_id, queue, run),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.post("/api/sessions/{session_id}/messages/stream", dependencies=[Depends(require_token)])
async def stream_message(
    session_id: str,
    request: SendMessageRequest,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Send a message and stream the run's messages as Server-Sent Events."""
    return _start_streamed_run(services, session_id, request.content)


@app.get("/api/sessions/{session_id}/messages/stream", dependencies=[Depends(require_token)])
async def stream_message_get(
    session_id: str,
    content: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """EventSource variant of the streaming endpoint; content comes in the query."""
    return _start_streamed_run(services, session_id, content)


@app.post("/api/sessions/{session_id}/interrupt", dependencies=[Depends(require_token)])
async def interrupt_session(session_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Interrupt the session's current run, if any."""
    if not services.registry.exists(session_id):
        raise SessionNotFoundError(session_id)
    return {"session_id": session_id, "interrupted": services.orchestrator.interrupt(session_id)}


@app.get("/api/permissions", dependencies=[Depends(require_token)])
async def get_permissions(services: Services = Depends(get_services)) -> dict[str, PermissionLevel]:
    """Current permission level per tool."""
    return services.policy.snapshot()


@app.put("/api/permissions/{tool_name}", dependencies=[Depends(require_token)])
async def set_permission(
    tool_name: str,
    request: PermissionUpdateRequest,
    services: Services = Depends(get_services),
) -> dict[str, PermissionLevel]:
    """Change a tool's permission level at runtime."""
    services.policy.set_level(tool_name, request.level)
    return {tool_name: services.policy.level(tool_name)}


@app.get("/health", response_model=HealthResponse)
async def health(services: Services = Depends(get_services)) -> HealthResponse:
    """Check broker health."""
    return HealthResponse(
        broker="healthy",
        active_sessions=services.registry.active_count(),
        running_sessions=services.registry.running_count(),
        backend=services.settings.backend_type,
    )


# --- WebSocket ---


async def _pump(websocket: WebSocket, queue: asyncio.Queue[ServerMessage]) -> None:
    """Forward broadcast messages to one socket."""
    while True:
        message = await queue.get()
        await websocket.send_json(message.model_dump(mode="json"))


async def _handle_client_message(
    services: Services,
    session_id: str,
    data: dict[str, Any],
    websocket: WebSocket,
) -> None:
    kind = data.get("type")

    if kind == "send_input":
        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            await websocket.send_json(ErrorMessage(message="send_input requires content").model_dump(mode="json"))
            return
        try:
            _check_runnable(services, session_id)
        except SessionError as e:
            await websocket.send_json(ErrorMessage(message=str(e)).model_dump(mode="json"))
            return
        services.registry.add_user_message(session_id, content)
        task = asyncio.create_task(_background_run(services, session_id))
        _background_runs.add(task)
        task.add_done_callback(_background_runs.discard)

    elif kind == "interrupt":
        services.orchestrator.interrupt(session_id)

    elif kind == "ping":
        await websocket.send_json({"type": "pong"})

    else:
        await websocket.send_json(ErrorMessage(message=f"Unknown message type: {kind}").model_dump(mode="json"))


@app.websocket("/ws/sessions/{session_id}")
async def session_socket(
    websocket: WebSocket,
    session_id: str,
    token: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> None:
    """Stream a session's messages and accept send_input / interrupt / ping."""
    expected = services.settings.auth_token
    if expected and token != expected:
        await websocket.close(code=4401)
        return

    session = services.registry.load(session_id)
    if session is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    queue = services.broadcaster.subscribe(session_id)
    sender = asyncio.create_task(_pump(websocket, queue))
    await websocket.send_json(session.info().model_dump(mode="json") | {"type": "session_info"})

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                continue
            await _handle_client_message(services, session_id, data, websocket)
    except WebSocketDisconnect:
        logger.info(f"WebSocket closed for session {session_id}")
    finally:
        sender.cancel()
        services.broadcaster.unsubscribe(session_id, queue)


# --- Error Handlers ---


@app.exception_handler(SessionError)
async def session_exception_handler(request, exc: SessionError) -> JSONResponse:
    """Map session precondition failures to 404 / 409."""
    if isinstance(exc, SessionNotFoundError):
        status_code, error_code = 404, "SESSION_NOT_FOUND"
    elif isinstance(exc, SessionEndedError):
        status_code, error_code = 409, "SESSION_ENDED"
    else:
        status_code, error_code = 409, "SESSION_LOCKED"
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=str(exc), error_code=error_code).model_dump(),
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(detail=str(exc), error_code="VALIDATION_ERROR").model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
