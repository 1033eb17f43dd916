"""Service that validates submissions and applies idempotent point awards."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from codeshare_app.core.errors import InvalidInputError
from codeshare_app.core.models import ProgressRecord, Task, ValidationResult
from codeshare_app.core.services.session_registry import SessionRegistry
from codeshare_app.core.services.session_state import SessionState
from codeshare_app.core.services.task_catalog import TaskCatalog
from codeshare_app.core.task_validator import validate_code

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ScoringOutcome:
    """Validation result plus the state changes it caused."""

    state: SessionState
    task: Task
    result: ValidationResult
    record: ProgressRecord
    newly_completed: bool
    points: int


class ScoringEngine:
    """Runs a task's rules and records the attempt in the student's session."""

    def __init__(self, registry: SessionRegistry, catalog: TaskCatalog) -> None:
        self._registry = registry
        self._catalog = catalog

    def resolve(self, task_id: int, code: str | None, student_id: str | None) -> tuple[Task, SessionState]:
        """Check the request and find the task and the student's session."""
        task = self._catalog.get_task(task_id)
        if code is None or not code.strip():
            raise InvalidInputError("Code must not be empty.")
        if not student_id:
            raise InvalidInputError("A student id is required.")
        return task, self._registry.find_session_for_student(student_id)

    def score(self, state: SessionState, task: Task, code: str, student_id: str) -> ScoringOutcome:
        """Validate and record one attempt.

        Points are added only when this attempt moves the record to completed,
        so re-validating a completed task never awards twice.
        """
        with state.lock:
            state.require_student(student_id)
            result = validate_code(task, code)
            record, newly_completed, points = state.record_attempt(student_id, task, result.score, result.passed)
        if newly_completed:
            logger.info(
                "Student %s completed task %s in %s (+%d, total %d)",
                student_id,
                task.id,
                state.session_id,
                task.points,
                points,
            )
        else:
            logger.debug(
                "Student %s attempt %d on task %s scored %d",
                student_id,
                record.attempts,
                task.id,
                result.score,
            )
        return ScoringOutcome(
            state=state,
            task=task,
            result=result,
            record=record,
            newly_completed=newly_completed,
            points=points,
        )
