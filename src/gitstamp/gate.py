"""Throttle for TSA submissions.

Public TSAs ask clients not to hammer them. Within one run, the first
submission goes out immediately; once the TSA has answered one, every
later one waits ``interval`` seconds first. The gate holds a lock, so
callers on several threads still queue through a single slot.
"""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger("gitstamp.gate")


class RequestGate:
    """First caller passes, later callers wait.

    Args:
        interval: Seconds to wait once the gate has been marked.
        sleep: Sleep function (replaced in tests).
    """

    def __init__(
        self,
        interval: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.interval = interval
        self._sleep = sleep
        self._pending = False
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        """True once a submission has gone out in this run."""
        return self._pending

    def wait(self) -> None:
        """Block for ``interval`` if an earlier submission marked the gate."""
        with self._lock:
            if self._pending and self.interval > 0:
                logger.debug("Waiting %.1fs before next TSA request", self.interval)
                self._sleep(self.interval)

    def mark(self) -> None:
        """Record a submission so the next :meth:`wait` blocks."""
        with self._lock:
            self._pending = True
