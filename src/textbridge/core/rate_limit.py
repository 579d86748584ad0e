"""In-memory fixed-window rate limiter for the webhook receiver.

Each client key maps to its current window (start time and request count). The
limiter is per-process and advisory: it protects the receiver from abusive or
misconfigured push traffic, not from a distributed attacker.

Windows live in a ``TTLCache`` whose TTL is the window length, so memory stays
bounded: ``sweep()`` (run periodically by the service) drops expired windows,
and the table never holds more than ``max_keys`` entries. When it is full,
expired windows go first and then the least recently seen client.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cachetools import TTLCache

DEFAULT_WINDOW_MS = 60_000
DEFAULT_MAX_REQUESTS = 60
DEFAULT_MAX_KEYS = 10_000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class _Window:
    start: float
    count: int


class RateLimiter:
    """Fixed-window request counter keyed by client address."""

    def __init__(
        self,
        window_ms: int = DEFAULT_WINDOW_MS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Optional[Callable[[], float]] = None,
    ):
        if window_ms <= 0 or max_requests <= 0 or max_keys <= 0:
            raise ValueError("window_ms, max_requests and max_keys must be positive")
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.max_keys = max_keys
        self._clock = clock or _monotonic_ms
        self._windows: TTLCache = TTLCache(maxsize=max_keys, ttl=window_ms, timer=self._clock)
        self._lock = threading.Lock()

    def _expired(self, window: _Window, now: float) -> bool:
        return now - window.start >= self.window_ms

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or self._expired(window, now):
                # Assigning restarts the entry's TTL along with the window
                self._windows[key] = _Window(start=now, count=1)
                return True
            if window.count < self.max_requests:
                window.count += 1
                return True
            return False

    def retry_after(self, key: str) -> float:
        """Seconds until ``key``'s current window expires (0 if none is active)."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or self._expired(window, now):
                return 0.0
            return max(0.0, (window.start + self.window_ms - now) / 1000)

    def sweep(self) -> int:
        """Drop expired windows. Returns the number of entries removed."""
        with self._lock:
            return len(self._windows.expire())

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
