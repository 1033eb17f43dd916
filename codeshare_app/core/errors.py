"""
Exception hierarchy for the classroom core.

    ClassroomError (base)
    ├── NotFoundError           unknown session, student or task
    ├── InvalidInputError       missing name, empty code, blank fields
    ├── UnauthorizedError       acting outside the caller's role
    ├── ConflictError           duplicate join where it is not allowed
    └── ResourceExhaustedError  no free session code after bounded retries

HTTP routes convert these with ``to_http_exception``; the channel turns them
into ``error`` events for the sender.
"""

from __future__ import annotations

from fastapi import HTTPException


class ClassroomError(Exception):
    """Base exception for all classroom errors."""

    kind = "Error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class NotFoundError(ClassroomError):
    kind = "NotFound"
    status_code = 404


class InvalidInputError(ClassroomError):
    kind = "InvalidInput"
    status_code = 422


class UnauthorizedError(ClassroomError):
    kind = "Unauthorized"
    status_code = 403


class ConflictError(ClassroomError):
    kind = "Conflict"
    status_code = 409


class ResourceExhaustedError(ClassroomError):
    kind = "ResourceExhausted"
    status_code = 503
