"""Binds transport connections to sessions and roles, and tracks reconnection grace."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging
from threading import Lock
from typing import Any, Protocol

from codeshare_app.constants.session_constants import STUDENT_GRACE_PERIOD_SECONDS
from codeshare_app.core.errors import InvalidInputError, UnauthorizedError
from codeshare_app.core.models import Role, StudentStatus
from codeshare_app.core.scheduler import DelayedActionScheduler
from codeshare_app.core.services.session_registry import SessionRegistry
from codeshare_app.core.services.session_state import SessionState

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Transport endpoint the router can push events to."""

    connection_id: str

    def send(self, event: str, data: Any) -> None: ...

    def close(self) -> None: ...


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    DISCONNECTED = "disconnected"
    LEFT = "left"


@dataclass(slots=True)
class Binding:
    """Presence record tying one connection to a session, role and user."""

    connection: Connection
    state: ConnectionState = ConnectionState.CONNECTING
    session_id: str | None = None
    role: Role | None = None
    user_id: str | None = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def is_joined(self) -> bool:
        return self.state is ConnectionState.JOINED


@dataclass(slots=True)
class JoinOutcome:
    binding: Binding
    reconnected: bool
    superseded: Binding | None = None


class PresenceManager:
    """Owns the connection bindings and the per-student grace timers."""

    def __init__(
        self,
        registry: SessionRegistry,
        scheduler: DelayedActionScheduler,
        on_grace_expired: Callable[[str, str], None],
        grace_period_seconds: float = STUDENT_GRACE_PERIOD_SECONDS,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._on_grace_expired = on_grace_expired
        self._grace_period_seconds = grace_period_seconds
        self._bindings: dict[str, Binding] = {}
        self._by_session: dict[str, dict[str, Binding]] = {}
        self._lock = Lock()

    # --- Connection lifecycle ---

    def register(self, connection: Connection) -> Binding:
        binding = Binding(connection=connection)
        with self._lock:
            self._bindings[connection.connection_id] = binding
        return binding

    def get_binding(self, connection_id: str) -> Binding | None:
        with self._lock:
            return self._bindings.get(connection_id)

    def join(
        self,
        connection: Connection,
        state: SessionState,
        role: Role,
        user_id: str,
        user_name: str | None = None,
    ) -> JoinOutcome:
        """Move ``connection`` into ``Joined`` for ``state``.

        Must be called with ``state.lock`` held so the join and the
        notifications that follow it are ordered with other mutations.
        """
        binding = self.get_binding(connection.connection_id) or self.register(connection)
        if binding.is_joined:
            if binding.session_id == state.session_id and binding.user_id == user_id and binding.role is role:
                return JoinOutcome(binding=binding, reconnected=False)
            raise InvalidInputError("This connection has already joined a session.")
        if not user_id:
            raise InvalidInputError("A user id is required to join a session.")

        reconnected = False
        if role is Role.TEACHER:
            if user_id != state.teacher_id:
                raise UnauthorizedError(f"Only the teacher who created session {state.session_id} can join as teacher.")
            previous = state.attach_teacher(connection.connection_id)
        else:
            student = state.get_student(user_id)
            if student is None:
                if not (user_name or "").strip():
                    raise InvalidInputError("A name is required for a new student.")
                self._registry.admit_student(state, user_id, user_name or "")
            else:
                reconnected = student.announced and student.status is StudentStatus.DISCONNECTED
            self.cancel_grace(state.session_id, user_id)
            previous = state.attach_student(user_id, connection.connection_id)

        superseded = self._retire(state.session_id, previous) if previous else None
        with self._lock:
            binding.state = ConnectionState.JOINED
            binding.session_id = state.session_id
            binding.role = role
            binding.user_id = user_id
            self._by_session.setdefault(state.session_id, {})[connection.connection_id] = binding
        logger.info(
            "%s %s joined session %s via %s%s",
            role.value,
            user_id,
            state.session_id,
            connection.connection_id,
            " (reconnect)" if reconnected else "",
        )
        return JoinOutcome(binding=binding, reconnected=reconnected, superseded=superseded)

    def disconnect(self, connection: Connection, now: float) -> Binding | None:
        """Handle transport close. Returns the binding if it was ``Joined``."""
        with self._lock:
            binding = self._bindings.pop(connection.connection_id, None)
            if binding is None:
                return None
            was_joined = binding.is_joined
            self._unindex(binding)
            binding.state = ConnectionState.DISCONNECTED if was_joined else ConnectionState.LEFT
        if not was_joined or binding.session_id is None:
            return None

        state = self._registry.get_session(binding.session_id)
        if state is None:
            return binding
        with state.lock:
            if binding.role is Role.TEACHER:
                if state.detach_teacher(connection.connection_id, now):
                    logger.info("Teacher left session %s; idle timer started", state.session_id)
            elif binding.user_id and state.detach_student(binding.user_id, connection.connection_id):
                self.start_grace(state.session_id, binding.user_id)
        return binding

    def leave(self, binding: Binding) -> None:
        """Mark an explicit leave; the caller removes the roster entry."""
        with self._lock:
            self._bindings.pop(binding.connection_id, None)
            self._unindex(binding)
            binding.state = ConnectionState.LEFT
        if binding.session_id and binding.user_id:
            self.cancel_grace(binding.session_id, binding.user_id)

    def close_session(self, session_id: str) -> list[Binding]:
        """Detach every binding of a session and cancel its timers."""
        with self._lock:
            members = list(self._by_session.pop(session_id, {}).values())
            for binding in members:
                self._bindings.pop(binding.connection_id, None)
                binding.state = ConnectionState.LEFT
        self._scheduler.cancel_matching(lambda key: key[:2] == ("grace", session_id))
        return members

    # --- Queries ---

    def joined_bindings(self, session_id: str, role: Role | None = None) -> list[Binding]:
        with self._lock:
            members = list(self._by_session.get(session_id, {}).values())
        return [b for b in members if b.is_joined and (role is None or b.role is role)]

    def find_joined(self, session_id: str, role: Role, user_id: str | None = None) -> Binding | None:
        for binding in self.joined_bindings(session_id, role):
            if user_id is None or binding.user_id == user_id:
                return binding
        return None

    # --- Grace timers ---

    def has_pending_grace(self, session_id: str, student_id: str) -> bool:
        return self._scheduler.is_pending(("grace", session_id, student_id))

    def cancel_grace(self, session_id: str, student_id: str) -> bool:
        return self._scheduler.cancel(("grace", session_id, student_id))

    def start_grace(self, session_id: str, student_id: str) -> None:
        """Start the eviction timer for a student that holds no connection."""
        logger.info(
            "Student %s disconnected from %s; evicting in %.0fs unless they return",
            student_id,
            session_id,
            self._grace_period_seconds,
        )
        self._scheduler.schedule(
            ("grace", session_id, student_id),
            self._grace_period_seconds,
            lambda: self._on_grace_expired(session_id, student_id),
        )

    def _retire(self, session_id: str, connection_id: str) -> Binding | None:
        with self._lock:
            binding = self._bindings.pop(connection_id, None)
            if binding is None:
                return None
            self._unindex(binding)
            binding.state = ConnectionState.LEFT
        logger.info("Connection %s superseded in session %s", connection_id, session_id)
        return binding

    def _unindex(self, binding: Binding) -> None:
        if binding.session_id is None:
            return
        members = self._by_session.get(binding.session_id)
        if members is None:
            return
        members.pop(binding.connection_id, None)
        if not members:
            del self._by_session[binding.session_id]
