from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after_sec: int = 0


@dataclass
class _Window:
    count: int
    reset_at: float


class MemoryFixedWindowLimiter:
    """
    Fixed window rate limiter.
    One counter per key; the first request after a window closes opens a new
    one. Closed windows are evicted by `sweep()`, which the app schedules.
    """
    def __init__(self, max_requests: int, window_sec: int, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        w = self._windows.get(key)

        if w is None or w.reset_at <= now:
            w = _Window(count=0, reset_at=now + self.window_sec)
            self._windows[key] = w

        w.count += 1
        reset_after = int(max(1, math.ceil(w.reset_at - now)))
        remaining = max(0, self.max_requests - w.count)

        if w.count > self.max_requests:
            return RateLimitResult(allowed=False, limit=self.max_requests, remaining=0, reset_after_sec=reset_after)
        return RateLimitResult(allowed=True, limit=self.max_requests, remaining=remaining, reset_after_sec=reset_after)

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for k in expired:
            self._windows.pop(k, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
