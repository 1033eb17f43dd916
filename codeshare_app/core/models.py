"""Domain models for the classroom code-sharing core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"


class StudentStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ProgressStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(slots=True, frozen=True)
class ValidationRule:
    """One declarative check run against a student's HTML document."""

    kind: str
    args: tuple[str, ...]
    pass_message: str
    fail_message: str


@dataclass(slots=True, frozen=True)
class Task:
    """Read-only catalog entry describing a scored exercise."""

    id: int
    title: str
    description: str
    difficulty: Difficulty
    points: int
    starter_code: str
    hints: tuple[str, ...] = ()
    validation_rules: tuple[ValidationRule, ...] = ()


@dataclass(slots=True)
class Student:
    """Roster entry owned by a single session."""

    id: str
    session_id: str
    name: str
    join_order: int
    points: int = 0
    code: str = ""
    code_sequence: int | None = None
    connection_id: str | None = None
    status: StudentStatus = StudentStatus.DISCONNECTED
    announced: bool = False
    joined_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class ProgressRecord:
    """Completion and attempt tracking for one (student, task) pair."""

    student_id: str
    task_id: int
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    attempts: int = 0
    best_score: int = 0


@dataclass(slots=True, frozen=True)
class RuleResult:
    passed: bool
    message: str


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """Outcome of running a task's rules against submitted code."""

    passed: bool
    score: int
    results: tuple[RuleResult, ...]


@dataclass(slots=True, frozen=True)
class Hint:
    recipient_student_id: str
    text: str
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True, frozen=True)
class RosterEntry:
    """Immutable roster snapshot returned to consumers."""

    id: str
    name: str
    points: int
    status: StudentStatus
    join_order: int


@dataclass(slots=True, frozen=True)
class RankingRow:
    id: str
    name: str
    points: int
