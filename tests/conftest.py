"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable, Hashable
from itertools import count
import random
from typing import Any

import pytest

from codeshare_app.core.classroom_manager import ClassroomManager
from codeshare_app.core.services.session_registry import SessionRegistry
from codeshare_app.core.services.task_catalog import TaskCatalog
from codeshare_app.core.task_importer import parse_tasks_text

SAMPLE_TASKS = """
ID: 1
TITLE: Heading
DIFFICULTY: easy
POINTS: 10
DESCRIPTION: Add an `<h1>` heading.
STARTER:
<body>

</body>
END STARTER
HINT: Use <h1>
RULE: tag h1 | Has a heading | Add an <h1>

---

ID: 5
TITLE: Shopping list
DIFFICULTY: medium
POINTS: 15
DESCRIPTION: A **shopping list** with three items.
STARTER:
<h1></h1>
END STARTER
RULE: text h1 Shopping list | Heading is right | Put "Shopping list" in the heading
RULE: tag ul | Has a list | Add a <ul>
RULE: tag_count li 3 | Three items | Add three <li> items
"""

PARTIAL_LIST = "<h1>Shopping list</h1><ul><li>Milk</li></ul>"
FULL_LIST = "<h1>Shopping list</h1><ul><li>Milk</li><li>Eggs</li><li>Bread</li></ul>"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeConnection:
    """Records every event pushed to it instead of writing to a socket."""

    _ids = count(1)

    def __init__(self, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or f"conn-{next(self._ids)}"
        self.sent: list[tuple[str, Any]] = []
        self.closed = False

    def send(self, event: str, data: Any) -> None:
        if not self.closed:
            self.sent.append((event, data))

    def close(self) -> None:
        self.closed = True

    def events(self) -> list[str]:
        return [event for event, _ in self.sent]

    def last(self, event: str) -> Any:
        for name, data in reversed(self.sent):
            if name == event:
                return data
        raise AssertionError(f"{self.connection_id} never received {event!r}; got {self.events()}")

    def count(self, event: str) -> int:
        return sum(1 for name, _ in self.sent if name == event)

    def clear(self) -> None:
        self.sent.clear()


class ManualScheduler:
    """Drop-in for ``DelayedActionScheduler`` that only fires when told to."""

    def __init__(self) -> None:
        self.pending: dict[Hashable, tuple[float, Callable[[], None]]] = {}

    def schedule(self, key: Hashable, delay_seconds: float, action: Callable[[], None]) -> None:
        self.pending[key] = (delay_seconds, action)

    def cancel(self, key: Hashable) -> bool:
        return self.pending.pop(key, None) is not None

    def is_pending(self, key: Hashable) -> bool:
        return key in self.pending

    def cancel_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        keys = [key for key in self.pending if predicate(key)]
        for key in keys:
            del self.pending[key]
        return len(keys)

    def cancel_all(self) -> None:
        self.pending.clear()

    def fire(self, key: Hashable) -> None:
        _, action = self.pending.pop(key)
        action()

    def fire_all(self) -> None:
        while self.pending:
            self.fire(next(iter(self.pending)))


@pytest.fixture
def catalog():
    return TaskCatalog(parse_tasks_text(SAMPLE_TASKS))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def registry(clock):
    return SessionRegistry(clock=clock, rng=random.Random(7))


@pytest.fixture
def manager(catalog, registry, scheduler):
    return ClassroomManager(
        catalog,
        registry=registry,
        scheduler=scheduler,
        grace_period_seconds=120,
        idle_timeout_seconds=1800,
    )


@pytest.fixture
def classroom(manager):
    """A session with its teacher joined over the channel."""
    session_id, teacher_id = manager.create_session("Ms. Berg")
    teacher = FakeConnection("teacher-conn")
    manager.connect(teacher)
    manager.handle_message(
        teacher,
        {"event": "join-session", "data": {"sessionId": session_id, "userId": teacher_id, "role": "teacher"}},
    )
    teacher.clear()
    return session_id, teacher_id, teacher


def join_student(manager: ClassroomManager, session_id: str, student_id: str, name: str | None = None, connection=None):
    """Connect a student over the channel and return its connection."""
    connection = connection or FakeConnection()
    manager.connect(connection)
    data = {"sessionId": session_id, "userId": student_id, "role": "student"}
    if name is not None:
        data["userName"] = name
    manager.handle_message(connection, {"event": "join-session", "data": data})
    return connection
