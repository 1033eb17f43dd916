"""Business logic shared by the HTTP routes and the session channel."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from codeshare_app.constants.session_constants import (
    IDLE_SESSION_TIMEOUT_SECONDS,
    STUDENT_GRACE_PERIOD_SECONDS,
)
from codeshare_app.core.errors import (
    ClassroomError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from codeshare_app.core.models import (
    Hint,
    ProgressRecord,
    RankingRow,
    Role,
    Task,
    ValidationResult,
)
from codeshare_app.core.protocol import (
    CodeUpdateMessage,
    EndSessionMessage,
    GetStudentCodeMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SendHintMessage,
    SetTaskMessage,
    UpdateTemplateMessage,
    error_payload,
    initial_data_payload,
    parse_client_message,
    roster_payload,
    task_payload,
)
from codeshare_app.core.scheduler import DelayedActionScheduler
from codeshare_app.core.services.broadcast_router import BroadcastRouter
from codeshare_app.core.services.presence import Binding, Connection, PresenceManager
from codeshare_app.core.services.ranking import RankingService
from codeshare_app.core.services.scoring import ScoringEngine
from codeshare_app.core.services.session_registry import SessionRegistry
from codeshare_app.core.services.session_state import SessionState
from codeshare_app.core.services.task_catalog import TaskCatalog

logger = logging.getLogger(__name__)


class ClassroomManager:
    """Facade for the classroom services: Registry, Presence, Router, Scoring and Ranking."""

    def __init__(
        self,
        catalog: TaskCatalog,
        registry: SessionRegistry | None = None,
        scheduler: DelayedActionScheduler | None = None,
        grace_period_seconds: float = STUDENT_GRACE_PERIOD_SECONDS,
        idle_timeout_seconds: float = IDLE_SESSION_TIMEOUT_SECONDS,
    ) -> None:
        self._catalog = catalog
        self._registry = registry or SessionRegistry()
        self._scheduler = scheduler or DelayedActionScheduler()
        self._idle_timeout_seconds = idle_timeout_seconds
        self._presence = PresenceManager(
            registry=self._registry,
            scheduler=self._scheduler,
            on_grace_expired=self._expire_student,
            grace_period_seconds=grace_period_seconds,
        )
        self._router = BroadcastRouter(self._presence)
        self._scoring = ScoringEngine(self._registry, catalog)
        self._ranking = RankingService(self._registry)

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def presence(self) -> PresenceManager:
        return self._presence

    # --- Synchronous operations ---

    def create_session(self, teacher_name: str) -> tuple[str, str]:
        state = self._registry.create_session(teacher_name)
        return state.session_id, state.teacher_id

    def join_session(
        self, session_id: str, student_name: str, student_id: str | None = None
    ) -> tuple[str, str, str]:
        """Register a student over HTTP; returns (session id, student id, template)."""
        state, student, created = self._registry.join_session(session_id, student_name, student_id)
        with state.lock:
            # Until a channel connection arrives the entry is only kept for the grace window.
            if student.connection_id is None:
                self._presence.start_grace(state.session_id, student.id)
            template = state.get_template()
        logger.info(
            "Student %s %s session %s over HTTP",
            student.id,
            "joined" if created else "rejoined",
            state.session_id,
        )
        return state.session_id, student.id, template

    def end_session(self, session_id: str, teacher_id: str | None = None) -> bool:
        """End a session; ending one that is already gone is a no-op."""
        state = self._registry.get_session(session_id)
        if state is None:
            return False
        if teacher_id is not None and teacher_id != state.teacher_id:
            raise UnauthorizedError("Only the session's teacher can end it.")
        return self._close_session(state, reason="ended by teacher")

    def list_tasks(self) -> list[Task]:
        return self._catalog.list_tasks()

    def get_task(self, task_id: int) -> Task:
        return self._catalog.get_task(task_id)

    def get_progress(self, student_id: str) -> list[ProgressRecord]:
        state = self._registry.find_session_for_student(student_id)
        return state.list_progress(student_id)

    def validate_task(self, task_id: int, code: str | None, student_id: str | None) -> ValidationResult:
        task, state = self._scoring.resolve(task_id, code, student_id)
        with state.lock:
            outcome = self._scoring.score(state, task, code or "", student_id or "")
            if outcome.newly_completed:
                self._router.broadcast(
                    state.session_id,
                    "points-update",
                    {"studentId": student_id, "points": outcome.points, "taskCompleted": task.title},
                )
        return outcome.result

    def get_ranking(self, session_id: str, limit: int | None = None) -> list[RankingRow]:
        return self._ranking.rank(session_id, limit)

    # --- Channel ---

    def connect(self, connection: Connection) -> Binding:
        return self._presence.register(connection)

    def disconnect(self, connection: Connection) -> None:
        binding = self._presence.disconnect(connection, self._registry.now())
        if binding is not None:
            logger.info("Connection %s dropped from session %s", connection.connection_id, binding.session_id)

    def handle_message(self, connection: Connection, raw: object) -> None:
        """Single dispatch entry point for every frame a connection sends."""
        try:
            message = parse_client_message(raw)
        except ValidationError as exc:
            logger.debug("Rejected malformed frame from %s: %s", connection.connection_id, exc)
            connection.send("error", error_payload(_describe_validation_error(exc), InvalidInputError.kind))
            return

        try:
            if isinstance(message, JoinSessionMessage):
                self._on_join(connection, message)
            elif isinstance(message, CodeUpdateMessage):
                self._on_code_update(connection, message)
            elif isinstance(message, UpdateTemplateMessage):
                self._on_update_template(connection, message)
            elif isinstance(message, SetTaskMessage):
                self._on_set_task(connection, message)
            elif isinstance(message, SendHintMessage):
                self._on_send_hint(connection, message)
            elif isinstance(message, GetStudentCodeMessage):
                self._on_get_student_code(connection, message)
            elif isinstance(message, LeaveSessionMessage):
                self._on_leave(connection, message)
            elif isinstance(message, EndSessionMessage):
                self._on_end_session(connection, message)
        except ClassroomError as exc:
            logger.info("%s from %s failed: %s", message.event, connection.connection_id, exc.message)
            connection.send("error", error_payload(exc.message, exc.kind))

    def _on_join(self, connection: Connection, message: JoinSessionMessage) -> None:
        data = message.data
        state = self._registry.require_session(data.session_id)
        with state.lock:
            outcome = self._presence.join(connection, state, data.role, data.user_id, data.user_name)
            if outcome.superseded is not None:
                outcome.superseded.connection.close()

            if data.role is Role.TEACHER:
                self._router.send_to(outcome.binding, "students-list", roster_payload(state.list_students()))
                self._router.send_to(
                    outcome.binding,
                    "initial-data",
                    initial_data_payload(state.get_template(), None, state.get_current_task()),
                )
                return

            student = state.require_student(data.user_id)
            self._router.send_to(
                outcome.binding,
                "initial-data",
                initial_data_payload(state.get_template(), student.points, state.get_current_task()),
            )
            if state.mark_announced(student.id):
                self._router.broadcast(
                    state.session_id,
                    "student-joined",
                    {"studentId": student.id, "studentName": student.name, "points": student.points},
                    exclude_connection_id=connection.connection_id,
                )

    def _on_code_update(self, connection: Connection, message: CodeUpdateMessage) -> None:
        data = message.data
        state, binding = self._require_member(connection, data.session_id, Role.STUDENT)
        if binding.user_id != data.user_id:
            raise UnauthorizedError("Students can only publish their own code.")
        with state.lock:
            if not state.set_student_code(data.user_id, data.code, data.seq):
                logger.debug("Discarded stale code update seq=%s for %s", data.seq, data.user_id)
                return
            self._router.forward_code_update(state.session_id, data.user_id, data.code)

    def _on_update_template(self, connection: Connection, message: UpdateTemplateMessage) -> None:
        state, _ = self._require_member(connection, message.data.session_id, Role.TEACHER)
        with state.lock:
            template = state.set_template(message.data.template)
            self._router.broadcast(
                state.session_id,
                "template-updated",
                template,
                exclude_connection_id=connection.connection_id,
            )
        logger.info("Template updated in session %s", state.session_id)

    def _on_set_task(self, connection: Connection, message: SetTaskMessage) -> None:
        state, _ = self._require_member(connection, message.data.session_id, Role.TEACHER)
        task = self._catalog.get_task(message.data.task_id)
        with state.lock:
            state.set_current_task(task.id)
            self._router.broadcast(
                state.session_id,
                "task-assigned",
                {"task": task_payload(task)},
                exclude_connection_id=connection.connection_id,
            )
        logger.info("Task %s assigned in session %s", task.id, state.session_id)

    def _on_send_hint(self, connection: Connection, message: SendHintMessage) -> None:
        data = message.data
        state, _ = self._require_member(connection, data.session_id, Role.TEACHER)
        text = data.hint.strip()
        if not text:
            raise InvalidInputError("Hint must not be empty.")
        with state.lock:
            state.require_student(data.student_id)
            self._router.deliver_hint(state.session_id, Hint(recipient_student_id=data.student_id, text=text))

    def _on_get_student_code(self, connection: Connection, message: GetStudentCodeMessage) -> None:
        data = message.data
        state, binding = self._require_member(connection, data.session_id, Role.TEACHER)
        with state.lock:
            student = state.require_student(data.student_id)
            self._router.send_to(
                binding,
                "student-code",
                {"studentId": student.id, "code": student.code, "points": student.points},
            )

    def _on_leave(self, connection: Connection, message: LeaveSessionMessage) -> None:
        data = message.data
        state, binding = self._require_member(connection, data.session_id, Role.STUDENT)
        if binding.user_id != data.user_id:
            raise UnauthorizedError("Students can only leave on their own behalf.")
        with state.lock:
            self._presence.leave(binding)
            self._remove_student(state, data.user_id)

    def _on_end_session(self, connection: Connection, message: EndSessionMessage) -> None:
        state, _ = self._require_member(connection, message.data.session_id, Role.TEACHER)
        self._close_session(state, reason="ended by teacher")

    # --- Timers and sweeps ---

    def reap_idle_sessions(self) -> list[str]:
        """End sessions that have had no teacher connection for the idle window."""
        reaped = []
        for state in self._registry.find_idle_sessions(self._idle_timeout_seconds):
            with state.lock:
                # The teacher may have rejoined since the scan.
                if not state.is_idle_since(self._registry.now() - self._idle_timeout_seconds):
                    continue
                if self._close_session(state, reason="idle timeout"):
                    reaped.append(state.session_id)
        return reaped

    def shutdown(self) -> None:
        for state in self._registry.list_sessions():
            self._close_session(state, reason="server shutdown")
        self._scheduler.cancel_all()

    def _expire_student(self, session_id: str, student_id: str) -> None:
        state = self._registry.get_session(session_id)
        if state is None:
            return
        with state.lock:
            student = state.get_student(student_id)
            if student is None or student.connection_id is not None:
                return
            logger.info("Grace period expired for student %s in %s", student_id, session_id)
            self._remove_student(state, student_id)

    # --- Helpers ---

    def _remove_student(self, state: SessionState, student_id: str) -> None:
        student = self._registry.evict_student(state, student_id)
        if student is None:
            return
        self._router.broadcast(
            state.session_id,
            "student-left",
            {"studentId": student.id, "studentName": student.name},
        )

    def _close_session(self, state: SessionState, reason: str) -> bool:
        with state.lock:
            if not state.mark_ended():
                return False
            self._router.broadcast(state.session_id, "session-ended", {"sessionId": state.session_id})
            members = self._presence.close_session(state.session_id)
        self._registry.remove_session(state.session_id)
        for binding in members:
            binding.connection.close()
        logger.info("Session %s closed (%s); %d connection(s) released", state.session_id, reason, len(members))
        return True

    def _require_member(self, connection: Connection, session_id: str, role: Role) -> tuple[SessionState, Binding]:
        binding = self._presence.get_binding(connection.connection_id)
        if binding is None or not binding.is_joined:
            raise UnauthorizedError("Join a session before sending this event.")
        state = self._registry.get_session(session_id)
        if state is None:
            raise NotFoundError(f"Session {session_id} does not exist.")
        if binding.session_id != state.session_id:
            raise UnauthorizedError("This connection belongs to a different session.")
        if binding.role is not role:
            raise UnauthorizedError(f"Only the {role.value} can send this event.")
        return state, binding


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else None
    if first is None:
        return "Malformed message."
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Malformed message at {location}: {first.get('msg', 'invalid value')}"
