"""
Rate limiting for the verification service.

Sliding-window limiter keyed by endpoint and client identifier. Proof
verification is CPU-bound, so a single client hammering the endpoint must
not starve everyone else.
"""

import time
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None

    def headers(self) -> Dict[str, str]:
        h = {"X-RateLimit-Remaining": str(self.remaining)}
        if self.retry_after is not None:
            h["Retry-After"] = str(int(self.retry_after) + 1)
        return h


class RateLimiter:
    """
    Sliding window rate limiter.

    Thread-safe; each key keeps a deque of hit timestamps inside the window.
    Keys whose hits have all expired are swept every sweep_every checks.
    """

    def __init__(self, rpm: int, window_seconds: int = 60, clock=time.monotonic, sweep_every: int = 1000):
        """
        Args:
            rpm: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
            clock: Monotonic time source, injectable for tests
            sweep_every: Checks between sweeps of idle keys
        """
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._sweep_every = max(1, sweep_every)
        self._checks = 0
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """Record a hit for key if it is within the limit."""
        now = self._clock()
        window_start = now - self._window

        with self._lock:
            self._checks += 1
            if self._checks >= self._sweep_every:
                self._checks = 0
                self._cleanup_locked(window_start)

            q = self._hits[key]
            while q and q[0] <= window_start:
                q.popleft()

            if len(q) >= self._limit:
                reset_at = q[0] + self._window
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0.0, reset_at - now)
                )

            q.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=self._limit - len(q),
                reset_at=q[0] + self._window
            )

    def reset(self, key: Optional[str] = None) -> None:
        """Reset counters for one key, or all keys."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()

    def cleanup_expired(self) -> int:
        """Drop expired hits and empty keys. Returns number of hits removed."""
        window_start = self._clock() - self._window
        with self._lock:
            return self._cleanup_locked(window_start)

    def _cleanup_locked(self, window_start: float) -> int:
        removed = 0
        for key in list(self._hits):
            q = self._hits[key]
            while q and q[0] <= window_start:
                q.popleft()
                removed += 1
            if not q:
                del self._hits[key]
        return removed
