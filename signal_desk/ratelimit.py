"""Shared rate limiter for externally rate-limited providers.

One instance is created per process (or per test) and handed to every
client that talks to the same provider, so the pacing is shared only
where the caller decides it should be.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum interval between calls per provider key."""

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: dict[str, float] = {}

    def wait(self, key: str) -> float:
        """Block until `key` may be called again. Returns seconds waited."""
        with self._lock:
            now = self._clock()
            last = self._last_call.get(key)
            delay = 0.0
            if last is not None:
                delay = max(0.0, last + self.min_interval - now)
            # Reserve the slot before releasing the lock
            self._last_call[key] = now + delay

        if delay > 0:
            logger.debug("Rate limit %s: waiting %.2fs", key, delay)
            self._sleep(delay)
        return delay

    def reset(self, key: str | None = None):
        with self._lock:
            if key is None:
                self._last_call.clear()
            else:
                self._last_call.pop(key, None)
