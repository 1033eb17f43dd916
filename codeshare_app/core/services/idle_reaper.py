"""Background sweep that ends sessions abandoned by their teacher."""

from __future__ import annotations

import logging
from threading import Event, Thread

from codeshare_app.constants.session_constants import IDLE_SWEEP_INTERVAL_SECONDS
from codeshare_app.core.classroom_manager import ClassroomManager

logger = logging.getLogger(__name__)


class IdleSessionReaper:
    """Periodically asks the manager to reap idle sessions until stopped."""

    def __init__(self, manager: ClassroomManager, interval_seconds: float = IDLE_SWEEP_INTERVAL_SECONDS) -> None:
        self._manager = manager
        self._interval_seconds = interval_seconds
        self._stop = Event()
        self._thread: Thread | None = None

    def start(self) -> Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = Thread(target=self._run, name="IdleSessionReaper", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def sweep(self) -> list[str]:
        reaped = self._manager.reap_idle_sessions()
        if reaped:
            logger.info("Reaped idle session(s): %s", ", ".join(reaped))
        return reaped

    def _run(self) -> None:
        while not self._stop.wait(self._interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Idle session sweep failed; retrying next interval")
