"""
Per-caller sliding-window rate limiter.
"""
import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment before trying again."


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_payload(self) -> Dict[str, object]:
        return {"error": RATE_LIMIT_MESSAGE, "retryAfter": self.retry_after}


class SlidingWindowRateLimiter:
    """Allows at most `max_requests` per key in any `window_seconds` span."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        retry_after: int = 60,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 1000,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_every = sweep_every
        self._since_sweep = 0

    @classmethod
    def from_settings(cls, app_settings) -> "SlidingWindowRateLimiter":
        return cls(
            max_requests=app_settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=app_settings.RATE_LIMIT_WINDOW_MS / 1000.0,
        )

    def _prune(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _reset_in(self, hits: Deque[float], now: float) -> int:
        if not hits:
            return 0
        return max(0, math.ceil(hits[0] + self.window_seconds - now))

    async def hit(self, key: str) -> RateLimitDecision:
        """Records a request for `key` unless that would exceed the limit."""
        async with self._lock:
            now = self._clock()
            self._since_sweep += 1
            if self._since_sweep >= self._sweep_every:
                self._sweep_locked(now)
            hits = self._hits.setdefault(key, deque())
            self._prune(hits, now)

            if len(hits) >= self.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_seconds=self._reset_in(hits, now),
                    retry_after=self.retry_after,
                )

            hits.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - len(hits),
                reset_seconds=self._reset_in(hits, now),
                retry_after=self.retry_after,
            )

    def _sweep_locked(self, now: float) -> int:
        self._since_sweep = 0
        stale = []
        for key, hits in self._hits.items():
            self._prune(hits, now)
            if not hits:
                stale.append(key)
        for key in stale:
            del self._hits[key]
        return len(stale)
