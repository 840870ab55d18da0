"""
In-process fixed-window rate limiter.

Counters live in memory, so limits are per process and reset on restart.
"""

import threading
import time
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float


class RateLimiter:
    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        # identifier -> (count, reset_time)
        self._store: Dict[str, Tuple[int, float]] = {}

    def is_allowed(self, identifier: str, limit: int, window_seconds: float) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            self._purge(now)
            entry = self._store.get(identifier)
            if entry is None:
                reset_time = now + window_seconds
                self._store[identifier] = (1, reset_time)
                return RateLimitResult(allowed=True, remaining=limit - 1, reset_time=reset_time)

            count, reset_time = entry
            count += 1
            self._store[identifier] = (count, reset_time)
            return RateLimitResult(
                allowed=count <= limit,
                remaining=max(0, limit - count),
                reset_time=reset_time,
            )

    def reset(self) -> None:
        with self._lock:
            self._store.clear()

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, reset_time) in self._store.items() if reset_time < now]
        for key in expired:
            del self._store[key]


limiter = RateLimiter()


def is_allowed(identifier: str, limit: int, window_seconds: float) -> RateLimitResult:
    return limiter.is_allowed(identifier, limit, window_seconds)
