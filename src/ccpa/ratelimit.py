"""Fixed-window request limiting per user."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Window:
    start: float
    count: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter:
    """Owns the window table for every user; run :meth:`sweep` periodically."""

    def __init__(self, max_requests: int, window_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[int, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, user_id: int) -> RateLimitDecision:
        now = self._clock()
        window = self._windows.get(user_id)
        if window is None or now - window.start > self.window_seconds:
            self._windows[user_id] = _Window(start=now, count=1)
            return RateLimitDecision(allowed=True)
        if window.count >= self.max_requests:
            remaining = self.window_seconds - (now - window.start)
            return RateLimitDecision(allowed=False, retry_after=max(1, math.ceil(remaining)))
        window.count += 1
        return RateLimitDecision(allowed=True)

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        expired = [user_id for user_id, window in self._windows.items() if now - window.start > self.window_seconds]
        for user_id in expired:
            del self._windows[user_id]
        return len(expired)
