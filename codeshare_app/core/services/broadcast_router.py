"""Delivers targeted and session-wide events to joined connections."""

from __future__ import annotations

import logging
from typing import Any

from codeshare_app.core.models import Hint, Role
from codeshare_app.core.services.presence import Binding, PresenceManager

logger = logging.getLogger(__name__)


class BroadcastRouter:
    """Fans events out to the connections the presence layer reports as joined.

    Callers deliver while holding the session lock. Connections keep a FIFO
    outbox, so every recipient observes events in mutation order. Nothing is
    queued for connections that are not joined: targeted events to them are
    dropped.
    """

    def __init__(self, presence: PresenceManager) -> None:
        self._presence = presence

    def send_to(self, binding: Binding | None, event: str, data: Any) -> bool:
        """Targeted delivery; returns False when the target is not joined."""
        if binding is None or not binding.is_joined:
            logger.debug("Dropped %s for a connection that is not joined", event)
            return False
        binding.connection.send(event, data)
        return True

    def send_to_student(self, session_id: str, student_id: str, event: str, data: Any) -> bool:
        binding = self._presence.find_joined(session_id, Role.STUDENT, student_id)
        delivered = self.send_to(binding, event, data)
        if not delivered:
            logger.info("Dropped %s for student %s in %s (not connected)", event, student_id, session_id)
        return delivered

    def send_to_teacher(self, session_id: str, event: str, data: Any) -> bool:
        return self.send_to(self._presence.find_joined(session_id, Role.TEACHER), event, data)

    def deliver_hint(self, session_id: str, hint: Hint) -> bool:
        return self.send_to_student(session_id, hint.recipient_student_id, "receive-hint", {"hint": hint.text})

    def broadcast(
        self,
        session_id: str,
        event: str,
        data: Any,
        exclude_connection_id: str | None = None,
        role: Role | None = None,
    ) -> int:
        """Session-wide delivery; returns the number of recipients."""
        delivered = 0
        for binding in self._presence.joined_bindings(session_id, role):
            if binding.connection_id == exclude_connection_id:
                continue
            binding.connection.send(event, data)
            delivered += 1
        logger.debug("Broadcast %s to %d connection(s) in %s", event, delivered, session_id)
        return delivered

    def forward_code_update(self, session_id: str, student_id: str, code: str) -> bool:
        """Push an applied code update to the teacher's view, last write wins."""
        return self.send_to_teacher(
            session_id,
            "student-code-update",
            {"studentId": student_id, "code": code},
        )
