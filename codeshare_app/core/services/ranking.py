"""Service that derives leaderboards from live session state."""

from __future__ import annotations

from codeshare_app.core.models import RankingRow
from codeshare_app.core.services.session_registry import SessionRegistry


class RankingService:
    """Computes rankings on demand; rosters are classroom-sized so nothing is cached."""

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    def rank(self, session_id: str, limit: int | None = None) -> list[RankingRow]:
        """Return students sorted by points, ties broken by who joined first."""
        state = self._registry.require_session(session_id)
        with state.lock:
            roster = state.list_students()
        sorted_entries = sorted(roster, key=lambda e: (-e.points, e.join_order))
        if limit is not None:
            sorted_entries = sorted_entries[:limit]
        return [RankingRow(id=entry.id, name=entry.name, points=entry.points) for entry in sorted_entries]
