"""Authoritative mutable state for one classroom session."""

from __future__ import annotations

from datetime import datetime
from itertools import count
import logging
from threading import RLock

from codeshare_app.constants.session_constants import DEFAULT_TEMPLATE
from codeshare_app.core.errors import InvalidInputError, NotFoundError
from codeshare_app.core.models import (
    ProgressRecord,
    ProgressStatus,
    RosterEntry,
    Student,
    StudentStatus,
    Task,
)

logger = logging.getLogger(__name__)


class SessionState:
    """Roster, template, active task and per-student progress for one session.

    Every mutation runs under ``lock``. Callers that need to broadcast the
    result of a mutation hold the same lock around the mutation and the
    delivery so each recipient sees changes in the order they were applied.
    """

    def __init__(
        self,
        session_id: str,
        teacher_id: str,
        teacher_name: str,
        now: float,
        template: str = DEFAULT_TEMPLATE,
    ) -> None:
        self.lock = RLock()
        self.session_id = session_id
        self.teacher_id = teacher_id
        self.teacher_name = teacher_name
        self.created_at = datetime.utcnow()
        self.teacher_connection_id: str | None = None
        self.teacher_idle_since: float | None = now
        self._template = template
        self._current_task_id: int | None = None
        self._students: dict[str, Student] = {}
        self._progress: dict[tuple[str, int], ProgressRecord] = {}
        self._join_counter = count()
        self._ended = False

    # --- Template and task ---

    def set_template(self, text: str) -> str:
        with self.lock:
            self._template = text
            return self._template

    def get_template(self) -> str:
        with self.lock:
            return self._template

    def set_current_task(self, task_id: int | None) -> int | None:
        with self.lock:
            self._current_task_id = task_id
            return self._current_task_id

    def get_current_task(self) -> int | None:
        with self.lock:
            return self._current_task_id

    # --- Teacher presence ---

    def attach_teacher(self, connection_id: str) -> str | None:
        """Bind the teacher connection and return the one it replaces, if any."""
        with self.lock:
            previous = self.teacher_connection_id
            self.teacher_connection_id = connection_id
            self.teacher_idle_since = None
            return previous if previous != connection_id else None

    def detach_teacher(self, connection_id: str, now: float) -> bool:
        with self.lock:
            if self.teacher_connection_id != connection_id:
                return False
            self.teacher_connection_id = None
            self.teacher_idle_since = now
            return True

    def is_idle_since(self, cutoff: float) -> bool:
        """True when no teacher has been connected since before ``cutoff``."""
        with self.lock:
            return (
                self.teacher_connection_id is None
                and self.teacher_idle_since is not None
                and self.teacher_idle_since <= cutoff
            )

    # --- Roster ---

    def upsert_student(self, student_id: str, name: str) -> Student:
        cleaned = name.strip()
        with self.lock:
            student = self._students.get(student_id)
            if student is None:
                if not cleaned:
                    raise InvalidInputError("Student name must not be empty.")
                student = Student(
                    id=student_id,
                    session_id=self.session_id,
                    name=cleaned,
                    join_order=next(self._join_counter),
                )
                self._students[student_id] = student
                logger.info("Student %s (%s) added to session %s", cleaned, student_id, self.session_id)
            elif cleaned:
                student.name = cleaned
            return student

    def remove_student(self, student_id: str) -> Student | None:
        with self.lock:
            student = self._students.pop(student_id, None)
            if student is not None:
                for key in [key for key in self._progress if key[0] == student_id]:
                    del self._progress[key]
            return student

    def get_student(self, student_id: str) -> Student | None:
        with self.lock:
            return self._students.get(student_id)

    def require_student(self, student_id: str) -> Student:
        student = self.get_student(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} is not part of session {self.session_id}.")
        return student

    def find_student_by_name(self, name: str) -> Student | None:
        wanted = name.strip().casefold()
        with self.lock:
            return next(
                (s for s in self._students.values() if s.name.casefold() == wanted),
                None,
            )

    def list_students(self) -> list[RosterEntry]:
        """Return the roster in join order."""
        with self.lock:
            return [
                RosterEntry(
                    id=s.id,
                    name=s.name,
                    points=s.points,
                    status=s.status,
                    join_order=s.join_order,
                )
                for s in sorted(self._students.values(), key=lambda s: s.join_order)
            ]

    def attach_student(self, student_id: str, connection_id: str) -> str | None:
        """Mark the student connected and return the connection it replaces, if any."""
        with self.lock:
            student = self.require_student(student_id)
            previous = student.connection_id
            student.connection_id = connection_id
            student.status = StudentStatus.CONNECTED
            # A new connection starts a fresh sequence stream.
            student.code_sequence = None
            return previous if previous != connection_id else None

    def detach_student(self, student_id: str, connection_id: str) -> bool:
        """Clear the student's connection if ``connection_id`` is still the live one."""
        with self.lock:
            student = self._students.get(student_id)
            if student is None or student.connection_id != connection_id:
                return False
            student.connection_id = None
            student.status = StudentStatus.DISCONNECTED
            return True

    def mark_announced(self, student_id: str) -> bool:
        """Flag the student as announced; return False if it already was."""
        with self.lock:
            student = self.require_student(student_id)
            if student.announced:
                return False
            student.announced = True
            return True

    # --- Code ---

    def set_student_code(self, student_id: str, code: str, sequence: int | None = None) -> bool:
        """Store the latest code; return False when a stale sequence number is discarded."""
        with self.lock:
            student = self.require_student(student_id)
            if sequence is not None:
                if student.code_sequence is not None and sequence <= student.code_sequence:
                    return False
                student.code_sequence = sequence
            student.code = code
            return True

    def get_student_code(self, student_id: str) -> str:
        with self.lock:
            return self.require_student(student_id).code

    # --- Points and progress ---

    def add_points(self, student_id: str, delta: int) -> int:
        if delta < 0:
            raise InvalidInputError("Points can only be added, never removed.")
        with self.lock:
            student = self.require_student(student_id)
            student.points += delta
            return student.points

    def get_points(self, student_id: str) -> int:
        with self.lock:
            return self.require_student(student_id).points

    def record_attempt(
        self, student_id: str, task: Task, score: int, passed: bool
    ) -> tuple[ProgressRecord, bool, int]:
        """Update the progress record for one attempt and award points on first completion.

        Returns a copy of the record, whether this attempt completed the task,
        and the student's resulting point total.
        """
        with self.lock:
            self.require_student(student_id)
            key = (student_id, task.id)
            record = self._progress.get(key)
            if record is None:
                record = ProgressRecord(student_id=student_id, task_id=task.id)
                self._progress[key] = record

            record.attempts += 1
            record.best_score = max(record.best_score, score)
            newly_completed = passed and record.status is not ProgressStatus.COMPLETED
            if newly_completed:
                record.status = ProgressStatus.COMPLETED
                total = self.add_points(student_id, task.points)
            else:
                if record.status is not ProgressStatus.COMPLETED:
                    record.status = ProgressStatus.IN_PROGRESS
                total = self._students[student_id].points
            snapshot = ProgressRecord(
                student_id=record.student_id,
                task_id=record.task_id,
                status=record.status,
                attempts=record.attempts,
                best_score=record.best_score,
            )
            return snapshot, newly_completed, total

    def list_progress(self, student_id: str) -> list[ProgressRecord]:
        with self.lock:
            self.require_student(student_id)
            return [
                ProgressRecord(
                    student_id=r.student_id,
                    task_id=r.task_id,
                    status=r.status,
                    attempts=r.attempts,
                    best_score=r.best_score,
                )
                for (owner, _), r in sorted(self._progress.items(), key=lambda item: item[0][1])
                if owner == student_id
            ]

    # --- Lifecycle ---

    def mark_ended(self) -> bool:
        with self.lock:
            if self._ended:
                return False
            self._ended = True
            return True

    def is_ended(self) -> bool:
        with self.lock:
            return self._ended

