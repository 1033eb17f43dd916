"""Service that creates, looks up and expires classroom sessions."""

from __future__ import annotations

from collections.abc import Callable
import logging
import random
from threading import Lock
import time
from uuid import uuid4

from codeshare_app.constants.session_constants import (
    DEFAULT_TEMPLATE,
    SESSION_CODE_ALPHABET,
    SESSION_CODE_LENGTH,
    SESSION_CODE_MAX_ATTEMPTS,
)
from codeshare_app.core.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    ResourceExhaustedError,
)
from codeshare_app.core.models import Student, StudentStatus
from codeshare_app.core.services.session_state import SessionState

logger = logging.getLogger(__name__)


def normalize_session_code(session_id: str | None) -> str:
    return (session_id or "").strip().upper()


class SessionRegistry:
    """Owns every active ``SessionState`` and the student-to-session index.

    The registry lock only guards the two maps. Per-session work happens under
    the session's own lock, so sessions never block each other.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        code_length: int = SESSION_CODE_LENGTH,
        max_attempts: int = SESSION_CODE_MAX_ATTEMPTS,
        default_template: str = DEFAULT_TEMPLATE,
    ) -> None:
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._code_length = code_length
        self._max_attempts = max_attempts
        self._default_template = default_template
        self._sessions: dict[str, SessionState] = {}
        self._student_index: dict[str, str] = {}
        self._lock = Lock()

    def now(self) -> float:
        return self._clock()

    def create_session(self, teacher_name: str) -> SessionState:
        cleaned = (teacher_name or "").strip()
        if not cleaned:
            raise InvalidInputError("Teacher name must not be empty.")
        teacher_id = uuid4().hex
        with self._lock:
            for _ in range(self._max_attempts):
                code = self._generate_code()
                if code in self._sessions:
                    continue
                state = SessionState(
                    session_id=code,
                    teacher_id=teacher_id,
                    teacher_name=cleaned,
                    now=self._clock(),
                    template=self._default_template,
                )
                self._sessions[code] = state
                break
            else:
                raise ResourceExhaustedError(
                    f"Could not allocate a free session code after {self._max_attempts} attempts."
                )
        logger.info("Session %s created by %s", state.session_id, cleaned)
        return state

    def get_session(self, session_id: str) -> SessionState | None:
        with self._lock:
            return self._sessions.get(normalize_session_code(session_id))

    def require_session(self, session_id: str) -> SessionState:
        state = self.get_session(session_id)
        if state is None:
            raise NotFoundError(f"Session {normalize_session_code(session_id)} does not exist.")
        return state

    def list_sessions(self) -> list[SessionState]:
        with self._lock:
            return list(self._sessions.values())

    def active_codes(self) -> set[str]:
        with self._lock:
            return set(self._sessions)

    def join_session(
        self, session_id: str, student_name: str, student_id: str | None = None
    ) -> tuple[SessionState, Student, bool]:
        """Create or reactivate a roster entry.

        Returns the session, the student and whether the student is new.
        """
        state = self.require_session(session_id)
        cleaned = (student_name or "").strip()
        if not cleaned:
            raise InvalidInputError("Student name must not be empty.")

        with state.lock:
            if student_id:
                existing = state.get_student(student_id)
                if existing is not None:
                    return state, state.upsert_student(student_id, cleaned), False

            same_name = state.find_student_by_name(cleaned)
            if same_name is not None:
                # Only an entry that was live once and dropped can be taken back by name.
                if not same_name.announced or same_name.status is StudentStatus.CONNECTED:
                    raise ConflictError(
                        f"A student named {cleaned!r} is already in session {state.session_id}."
                    )
                return state, same_name, False

            student = self.admit_student(state, student_id or uuid4().hex, cleaned)
            return state, student, True

    def admit_student(self, state: SessionState, student_id: str, name: str) -> Student:
        """Add a new student to ``state`` and index it."""
        with state.lock:
            student = state.upsert_student(student_id, name)
            with self._lock:
                self._student_index[student_id] = state.session_id
            return student

    def evict_student(self, state: SessionState, student_id: str) -> Student | None:
        with state.lock:
            student = state.remove_student(student_id)
            with self._lock:
                if self._student_index.get(student_id) == state.session_id:
                    del self._student_index[student_id]
            return student

    def find_session_for_student(self, student_id: str) -> SessionState:
        with self._lock:
            session_id = self._student_index.get(student_id)
            state = self._sessions.get(session_id) if session_id else None
        if state is None:
            raise NotFoundError(f"Student {student_id} is not part of any active session.")
        return state

    def remove_session(self, session_id: str) -> SessionState | None:
        """Drop a session and its index entries; return None when it was already gone."""
        code = normalize_session_code(session_id)
        with self._lock:
            state = self._sessions.pop(code, None)
            if state is None:
                return None
            for student_id in [sid for sid, owner in self._student_index.items() if owner == code]:
                del self._student_index[student_id]
        logger.info("Session %s removed", code)
        return state

    def find_idle_sessions(self, idle_timeout_seconds: float) -> list[SessionState]:
        cutoff = self._clock() - idle_timeout_seconds
        return [state for state in self.list_sessions() if state.is_idle_since(cutoff)]

    def _generate_code(self) -> str:
        return "".join(self._rng.choice(SESSION_CODE_ALPHABET) for _ in range(self._code_length))
