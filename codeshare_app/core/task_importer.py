"""Utilities for loading the task catalog from a human-friendly text file.

File format (blocks separated by a line containing only '---'):

    ID: 5
    TITLE: Shopping list
    DIFFICULTY: easy|medium|hard
    POINTS: 15
    DESCRIPTION: Markdown text. Additional lines until the next marker are
       treated as part of the description.
    STARTER:
    <!DOCTYPE html>
    ... any number of lines, blank lines included ...
    END STARTER
    HINT: First hint (repeatable, order is kept)
    RULE: tag_count li 3 | The list has three items | Add at least three <li> items

A RULE line is ``<kind> <args> | <pass message> | <fail message>``. The fail
message is optional and defaults to "Not yet: <pass message>".

Architecture note:
    A plain-text format keeps the catalog editable by teachers without
    tooling. Starter code needs an explicit terminator because HTML documents
    contain blank lines, so blocks are split on '---' only.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from codeshare_app.core.models import Difficulty, Task, ValidationRule
from codeshare_app.core.task_validator import RuleDefinitionError, parse_rule_arguments


class TaskImportError(Exception):
    """Raised when a task definition cannot be parsed."""


@dataclass(slots=True)
class ImportedCatalog:
    """Container for imported catalog metadata and tasks."""

    source_path: Path
    tasks: list[Task]


_STARTER_END = "END STARTER"


def load_tasks_from_file(file_path: Path) -> ImportedCatalog:
    text = file_path.read_text(encoding="utf-8")
    tasks = parse_tasks_text(text)
    if not tasks:
        raise TaskImportError("Task file did not contain any tasks.")
    return ImportedCatalog(source_path=file_path, tasks=tasks)


def parse_tasks_text(text: str) -> list[Task]:
    blocks: list[list[str]] = []
    current_block: list[str] = []
    in_starter = False
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if in_starter:
            current_block.append(raw_line)
            if stripped.upper() == _STARTER_END:
                in_starter = False
            continue
        if stripped == "---":
            if any(line.strip() for line in current_block):
                blocks.append(current_block)
            current_block = []
            continue
        if stripped.upper() == "STARTER:":
            in_starter = True
        current_block.append(raw_line)
    if in_starter:
        raise TaskImportError("STARTER section is missing its 'END STARTER' line.")
    if any(line.strip() for line in current_block):
        blocks.append(current_block)

    tasks: list[Task] = []
    seen_ids: set[int] = set()
    for index, block in enumerate(blocks, start=1):
        try:
            task = _parse_block(block)
        except TaskImportError as exc:
            raise TaskImportError(f"Task block {index}: {exc}") from exc
        if task.id in seen_ids:
            raise TaskImportError(f"Task block {index}: duplicate task id {task.id}.")
        seen_ids.add(task.id)
        tasks.append(task)
    return tasks


def _parse_block(lines: list[str]) -> Task:
    fields: dict[str, str] = {}
    description_lines: list[str] = []
    starter_lines: list[str] = []
    hints: list[str] = []
    rules: list[ValidationRule] = []
    current_section: str | None = None

    for raw_line in lines:
        if current_section == "STARTER":
            if raw_line.strip().upper() == _STARTER_END:
                current_section = None
            else:
                starter_lines.append(raw_line)
            continue

        line = raw_line.strip()
        if not line:
            if current_section == "DESCRIPTION":
                description_lines.append("")
            continue

        key, _, value = line.partition(":")
        key = key.strip().upper()
        value = value.strip()

        if key in ("ID", "TITLE", "DIFFICULTY", "POINTS"):
            fields[key] = value
            current_section = None
        elif key == "DESCRIPTION":
            description_lines = [value]
            current_section = "DESCRIPTION"
        elif key == "STARTER":
            current_section = "STARTER"
        elif key == "HINT":
            if not value:
                raise TaskImportError("HINT must not be empty.")
            hints.append(value)
            current_section = None
        elif key == "RULE":
            rules.append(_parse_rule(value))
            current_section = None
        elif current_section == "DESCRIPTION":
            description_lines.append(line)
        else:
            raise TaskImportError(f"Encountered text outside of a known section: '{line}'.")

    task_id = _parse_positive_int(fields.get("ID"), "ID")
    title = fields.get("TITLE", "")
    if not title:
        raise TaskImportError("TITLE missing (TITLE: ...)")
    try:
        difficulty = Difficulty(fields.get("DIFFICULTY", "").lower())
    except ValueError as exc:
        raise TaskImportError("DIFFICULTY must be one of easy, medium or hard.") from exc
    points = _parse_positive_int(fields.get("POINTS"), "POINTS")
    if not rules:
        raise TaskImportError("Each task must define at least one RULE.")

    return Task(
        id=task_id,
        title=title,
        description="\n".join(description_lines).strip(),
        difficulty=difficulty,
        points=points,
        starter_code="\n".join(starter_lines).strip("\n"),
        hints=tuple(hints),
        validation_rules=tuple(rules),
    )


def _parse_rule(value: str) -> ValidationRule:
    parts = [part.strip() for part in value.split(" | ")]
    if len(parts) not in (2, 3) or not parts[1]:
        raise TaskImportError(f"RULE must look like '<kind> <args> | <pass message> | <fail message>': '{value}'.")
    definition = parts[0]
    kind, _, raw_args = definition.partition(" ")
    try:
        args = parse_rule_arguments(kind.lower(), raw_args)
    except RuleDefinitionError as exc:
        raise TaskImportError(str(exc)) from exc
    pass_message = parts[1]
    fail_message = parts[2] if len(parts) == 3 and parts[2] else f"Not yet: {pass_message}"
    return ValidationRule(kind=kind.lower(), args=args, pass_message=pass_message, fail_message=fail_message)


def _parse_positive_int(raw_value: str | None, name: str) -> int:
    if not raw_value:
        raise TaskImportError(f"{name} must include an integer value.")
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise TaskImportError(f"{name} must be an integer.") from exc
    if parsed <= 0:
        raise TaskImportError(f"{name} must be a positive integer.")
    return parsed
