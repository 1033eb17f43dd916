"""FastAPI server that exposes the classroom HTTP routes and the session channel."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exception_handlers import http_exception_handler
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.concurrency import run_in_threadpool
import uvicorn

from codeshare_app.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from codeshare_app.constants.network_constants import (
    API_PREFIX,
    CHANNEL_PATH,
    DEFAULT_HOST,
    DEFAULT_PORT,
)
from codeshare_app.core.classroom_manager import ClassroomManager
from codeshare_app.core.errors import ClassroomError, InvalidInputError
from codeshare_app.core.protocol import (
    error_payload,
    progress_payload,
    ranking_payload,
    task_payload,
    validation_payload,
)
from codeshare_app.core.services.idle_reaper import IdleSessionReaper
from codeshare_app.core.services.session_registry import normalize_session_code

logger = logging.getLogger(__name__)

_CLOSE = object()


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionPayload(_Payload):
    """Payload schema for opening a new session."""

    teacher_name: str = ""


class JoinSessionPayload(_Payload):
    """Payload schema for the student join flow."""

    session_id: str = ""
    student_name: str = ""
    student_id: str | None = None


class EndSessionPayload(_Payload):
    teacher_id: str


class ValidateTaskPayload(_Payload):
    """Payload schema for submitted solutions."""

    task_id: int
    code: str | None = None
    student_id: str | None = None


class WebSocketConnection:
    """Channel connection with a FIFO outbox drained by a single writer task.

    ``send`` and ``close`` may be called from any thread: HTTP worker threads,
    timer threads or the event loop itself. Items are handed to the loop with
    ``call_soon_threadsafe`` so their order is the order of the calls.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop) -> None:
        self.connection_id = uuid4().hex
        self._websocket = websocket
        self._loop = loop
        self._outbox: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def send(self, event: str, data: Any) -> None:
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._outbox.put_nowait, {"event": event, "data": data})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.call_soon_threadsafe(self._outbox.put_nowait, _CLOSE)

    async def pump(self) -> None:
        while True:
            item = await self._outbox.get()
            try:
                if item is _CLOSE:
                    await self._websocket.close(code=1000)
                    return
                await self._websocket.send_json(item)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.debug("Stopped writing to %s: %s", self.connection_id, exc)
                return


def create_api_app(manager: ClassroomManager, reaper: IdleSessionReaper | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided classroom manager."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if reaper is not None:
            reaper.start()
        yield
        if reaper is not None:
            reaper.stop(timeout=5)
        manager.shutdown()

    app = FastAPI(
        title=f"{APP_NAME} API",
        description=APP_ABOUT_TEXT,
        version=APP_VERSION,
        license_info={"name": APP_LICENSE},
        lifespan=lifespan,
    )

    @app.exception_handler(ClassroomError)
    async def classroom_error_handler(request: Request, exc: ClassroomError):
        return await http_exception_handler(request, exc.to_http_exception())

    @app.get(f"{API_PREFIX}/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "app": APP_NAME,
            "version": APP_VERSION,
            "active_sessions": len(manager.registry.active_codes()),
        }

    @app.post(f"{API_PREFIX}/create-session", status_code=201)
    def create_session(payload: CreateSessionPayload) -> dict[str, object]:
        session_id, teacher_id = manager.create_session(payload.teacher_name)
        return {"sessionId": session_id, "teacherId": teacher_id}

    @app.post(f"{API_PREFIX}/join-session")
    def join_session(payload: JoinSessionPayload) -> dict[str, object]:
        session_id, student_id, template = manager.join_session(
            payload.session_id,
            payload.student_name,
            payload.student_id,
        )
        return {"sessionId": session_id, "studentId": student_id, "codeTemplate": template}

    @app.post(f"{API_PREFIX}/session/{{session_id}}/end")
    def end_session(session_id: str, payload: EndSessionPayload) -> dict[str, object]:
        ended = manager.end_session(session_id, teacher_id=payload.teacher_id)
        return {"sessionId": normalize_session_code(session_id), "ended": ended}

    @app.get(f"{API_PREFIX}/tasks")
    def list_tasks() -> list[dict[str, object]]:
        return [task_payload(task) for task in manager.list_tasks()]

    @app.get(f"{API_PREFIX}/tasks/{{task_id}}")
    def get_task(task_id: int) -> dict[str, object]:
        return task_payload(manager.get_task(task_id))

    @app.get(f"{API_PREFIX}/student/{{student_id}}/progress")
    def get_progress(student_id: str) -> list[dict[str, object]]:
        return progress_payload(manager.get_progress(student_id))

    @app.post(f"{API_PREFIX}/validate-task")
    def validate_task(payload: ValidateTaskPayload) -> dict[str, object]:
        result = manager.validate_task(payload.task_id, payload.code, payload.student_id)
        return validation_payload(result)

    @app.get(f"{API_PREFIX}/session/{{session_id}}/ranking")
    def get_ranking(session_id: str, limit: int | None = Query(default=None, ge=1)) -> list[dict[str, object]]:
        return ranking_payload(manager.get_ranking(session_id, limit))

    @app.websocket(CHANNEL_PATH)
    async def session_channel(websocket: WebSocket) -> None:
        await websocket.accept()
        connection = WebSocketConnection(websocket, asyncio.get_running_loop())
        manager.connect(connection)
        writer = asyncio.create_task(connection.pump())
        try:
            while True:
                try:
                    frame = await websocket.receive_json()
                except (KeyError, ValueError):
                    # Binary frames carry no text; non-JSON text fails to decode.
                    connection.send("error", error_payload("Frames must be JSON text.", InvalidInputError.kind))
                    continue
                # Session locks can be held by HTTP workers, so keep lock waits off the loop.
                await run_in_threadpool(manager.handle_message, connection, frame)
        except WebSocketDisconnect:
            logger.debug("Channel %s closed by client", connection.connection_id)
        finally:
            await run_in_threadpool(manager.disconnect, connection)
            writer.cancel()

    return app


def run_api_server(
    manager: ClassroomManager,
    reaper: IdleSessionReaper | None = None,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(manager, reaper)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    server.run()
