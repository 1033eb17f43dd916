"""
Channel protocol

Every frame on the session channel is ``{"event": <name>, "data": <payload>}``.
Client frames are parsed into a closed, tagged union of message models; server
payloads are built by the factory functions at the bottom of this module so
HTTP responses and channel events share one wire shape.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from codeshare_app.core.markdown_renderer import renderer
from codeshare_app.core.models import (
    ProgressRecord,
    RankingRow,
    Role,
    RosterEntry,
    Task,
    ValidationResult,
)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Client -> Server payloads

class JoinSessionData(_Payload):
    session_id: str
    user_id: str
    user_name: str | None = None
    role: Role


class CodeUpdateData(_Payload):
    session_id: str
    user_id: str
    code: str
    seq: int | None = Field(default=None, ge=0)


class UpdateTemplateData(_Payload):
    session_id: str
    template: str


class SetTaskData(_Payload):
    session_id: str
    task_id: int


class SendHintData(_Payload):
    session_id: str
    student_id: str
    hint: str


class GetStudentCodeData(_Payload):
    session_id: str
    student_id: str


class LeaveSessionData(_Payload):
    session_id: str
    user_id: str


class EndSessionData(_Payload):
    session_id: str


class JoinSessionMessage(BaseModel):
    event: Literal["join-session"]
    data: JoinSessionData


class CodeUpdateMessage(BaseModel):
    event: Literal["code-update"]
    data: CodeUpdateData


class UpdateTemplateMessage(BaseModel):
    event: Literal["update-template"]
    data: UpdateTemplateData


class SetTaskMessage(BaseModel):
    event: Literal["set-task"]
    data: SetTaskData


class SendHintMessage(BaseModel):
    event: Literal["send-hint"]
    data: SendHintData


class GetStudentCodeMessage(BaseModel):
    event: Literal["get-student-code"]
    data: GetStudentCodeData


class LeaveSessionMessage(BaseModel):
    event: Literal["leave-session"]
    data: LeaveSessionData


class EndSessionMessage(BaseModel):
    event: Literal["end-session"]
    data: EndSessionData


ClientMessage = Annotated[
    Union[
        JoinSessionMessage,
        CodeUpdateMessage,
        UpdateTemplateMessage,
        SetTaskMessage,
        SendHintMessage,
        GetStudentCodeMessage,
        LeaveSessionMessage,
        EndSessionMessage,
    ],
    Field(discriminator="event"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: Any) -> ClientMessage:
    """Validate a decoded frame; raises ``pydantic.ValidationError`` when malformed."""
    return _client_message_adapter.validate_python(raw)


# Server -> Client payload factories

def task_payload(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "description_html": renderer.render_fragment(task.description),
        "difficulty": task.difficulty.value,
        "points": task.points,
        "starter_code": task.starter_code,
        "hints": list(task.hints),
        "rule_count": len(task.validation_rules),
    }


def initial_data_payload(template: str, points: int | None, current_task_id: int | None) -> dict[str, Any]:
    return {"codeTemplate": template, "points": points, "currentTaskId": current_task_id}


def roster_payload(entries: list[RosterEntry]) -> list[dict[str, Any]]:
    return [
        {"id": entry.id, "name": entry.name, "points": entry.points, "status": entry.status.value}
        for entry in entries
    ]


def ranking_payload(rows: list[RankingRow]) -> list[dict[str, Any]]:
    return [{"id": row.id, "name": row.name, "points": row.points} for row in rows]


def progress_payload(records: list[ProgressRecord]) -> list[dict[str, Any]]:
    return [
        {
            "student_id": record.student_id,
            "task_id": record.task_id,
            "status": record.status.value,
            "attempts": record.attempts,
            "best_score": record.best_score,
        }
        for record in records
    ]


def validation_payload(result: ValidationResult) -> dict[str, Any]:
    return {
        "passed": result.passed,
        "score": result.score,
        "results": [{"passed": r.passed, "message": r.message} for r in result.results],
    }


def error_payload(message: str, kind: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"message": message}
    if kind:
        payload["kind"] = kind
    return payload
