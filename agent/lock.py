"""
Single-run lock for the agent controller.
"""

import logging
import threading
import time
from typing import Callable

from .errors import AlreadyRunningError

logger = logging.getLogger(__name__)

AGENT_LOCK_TIMEOUT = 300.0


class RunLock:
    """At most one active run; a lock older than `timeout` seconds is stale."""

    def __init__(self, timeout: float = AGENT_LOCK_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._guard = threading.Lock()
        self._held = False
        self._acquired_at = 0.0

    @property
    def held(self) -> bool:
        return self._held

    @property
    def acquired_at(self) -> float:
        return self._acquired_at

    def is_stale(self) -> bool:
        return self._held and self._clock() - self._acquired_at > self.timeout

    def acquire(self) -> bool:
        """Take the lock. Returns True when a stale holder had to be force-cleared.

        Raises AlreadyRunningError while a fresh holder exists.
        """
        with self._guard:
            forced = False
            if self._held:
                age = self._clock() - self._acquired_at
                if age <= self.timeout:
                    raise AlreadyRunningError()
                logger.warning(f"Force-clearing stale agent lock held for {age:.0f}s")
                forced = True
            self._held = True
            self._acquired_at = self._clock()
            return forced

    def release(self) -> None:
        with self._guard:
            self._held = False
            self._acquired_at = 0.0
