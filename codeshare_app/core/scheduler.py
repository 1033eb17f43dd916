"""Cancellable delayed actions keyed by an arbitrary hashable key."""

from __future__ import annotations

from collections.abc import Callable, Hashable
import logging
from threading import Lock, Timer

logger = logging.getLogger(__name__)


class DelayedActionScheduler:
    """Runs one pending action per key after a delay.

    Scheduling a key that already has a pending action replaces it, so timers
    never stack. Actions run on a ``threading.Timer`` thread.
    """

    def __init__(self) -> None:
        self._timers: dict[Hashable, Timer] = {}
        self._lock = Lock()

    def schedule(self, key: Hashable, delay_seconds: float, action: Callable[[], None]) -> None:
        timer: Timer

        def fire() -> None:
            with self._lock:
                if self._timers.get(key) is not timer:
                    return
                del self._timers[key]
            action()

        timer = Timer(delay_seconds, fire)
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def is_pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._timers

    def cancel_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            keys = [key for key in self._timers if predicate(key)]
            timers = [self._timers.pop(key) for key in keys]
        for timer in timers:
            timer.cancel()
        return len(timers)

    def cancel_all(self) -> None:
        cancelled = self.cancel_matching(lambda _key: True)
        if cancelled:
            logger.debug("Cancelled %d pending timers", cancelled)
