"""Client-side coalescing of rapid editor changes into single code updates."""

from __future__ import annotations

from collections.abc import Callable, Hashable
from itertools import count
from threading import Lock

from codeshare_app.constants.session_constants import CODE_UPDATE_DEBOUNCE_SECONDS
from codeshare_app.core.scheduler import DelayedActionScheduler


class CodeUpdateDebouncer:
    """Emits one ``code-update`` per quiet period, carrying the latest code.

    Each keystroke calls ``push``; a pending emission is replaced rather than
    stacked. Emissions are numbered so the server can discard any update that
    arrives after a newer one.
    """

    def __init__(
        self,
        scheduler: DelayedActionScheduler,
        emit: Callable[[str, int], None],
        delay_seconds: float = CODE_UPDATE_DEBOUNCE_SECONDS,
        key: Hashable = "code-update",
    ) -> None:
        self._scheduler = scheduler
        self._emit = emit
        self._delay_seconds = delay_seconds
        self._key = key
        self._sequence = count(1)
        self._pending: str | None = None
        self._lock = Lock()

    def push(self, code: str) -> None:
        with self._lock:
            self._pending = code
        self._scheduler.schedule(self._key, self._delay_seconds, self._fire)

    def flush(self) -> bool:
        """Emit the pending code now; returns False if nothing was pending."""
        self._scheduler.cancel(self._key)
        return self._fire()

    def cancel(self) -> bool:
        cancelled = self._scheduler.cancel(self._key)
        with self._lock:
            self._pending = None
        return cancelled

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def _fire(self) -> bool:
        with self._lock:
            code, self._pending = self._pending, None
            if code is None:
                return False
            sequence = next(self._sequence)
        self._emit(code, sequence)
        return True
