"""Client-side request pacing shared by every worker thread."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable


class RequestPacer:
    """Enforces a minimum spacing between consecutive outbound requests.

    Each caller reserves the next free slot under the lock and then sleeps
    outside of it, so two threads can never be granted slots closer than
    ``min_interval`` seconds apart.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = max(float(min_interval), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._next_slot = 0.0

    def wait(self) -> float:
        """Block until this caller may send; return the time slept."""
        if self.min_interval <= 0:
            return 0.0
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay


def no_pacing() -> RequestPacer:
    return RequestPacer(0.0)
