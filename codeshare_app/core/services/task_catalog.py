"""Service for the read-only catalog of classroom tasks."""

from __future__ import annotations

from pathlib import Path

from codeshare_app.core.errors import NotFoundError
from codeshare_app.core.models import Difficulty, Task
from codeshare_app.core.task_importer import load_tasks_from_file

_DIFFICULTY_ORDER = {Difficulty.EASY: 0, Difficulty.MEDIUM: 1, Difficulty.HARD: 2}


class TaskCatalog:
    """Holds the tasks teachers can assign; never mutated after loading."""

    def __init__(self, tasks: list[Task]) -> None:
        if not tasks:
            raise ValueError("Task catalog must contain at least one task.")
        self._tasks: dict[int, Task] = {}
        for task in tasks:
            if task.id in self._tasks:
                raise ValueError(f"Duplicate task id {task.id}.")
            self._tasks[task.id] = task

    @classmethod
    def from_file(cls, file_path: Path) -> "TaskCatalog":
        return cls(load_tasks_from_file(file_path).tasks)

    def list_tasks(self) -> list[Task]:
        """Return tasks grouped easy, medium, hard and ordered by id within a group."""
        return sorted(self._tasks.values(), key=lambda t: (_DIFFICULTY_ORDER[t.difficulty], t.id))

    def get_task(self, task_id: int) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} does not exist.")
        return task

    def get_task_count(self) -> int:
        return len(self._tasks)
