"""
Per-provider Rate Limiter

Dual admission control for a single search provider:
1. Token bucket - capacity `initial_tokens`, refilled continuously at
   `refill_rate` tokens/second, never above capacity
2. Sliding window - at most `max_requests` admissions in the trailing
   `window_seconds`

A request is admitted only if both gates pass. Admission consumes one token
and records a timestamp; the check and the consume happen under the
limiter's lock, so a concurrent burst can never over-admit. Expired window
timestamps are purged lazily on each check.

Usage:
    from websearch.rate_limiter import RateLimiter, RateLimiterConfig

    limiter = RateLimiter("duckduckgo", RateLimiterConfig(max_requests=20))
    if await limiter.try_acquire():
        ...
    await limiter.acquire(timeout=5.0)  # waits with backoff, never spins
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional

from .errors import RateLimitedError

logger = logging.getLogger("websearch.rate_limiter")

# Lower bound on a single wait so acquire() never busy-loops
MIN_WAIT_SECONDS = 0.01


@dataclass
class RateLimiterConfig:
    """Rate limit configuration for one provider."""
    max_requests: int = 100        # Admissions allowed in the sliding window
    window_seconds: float = 60.0   # Sliding window length
    initial_tokens: int = 10       # Bucket capacity (and starting fill)
    refill_rate: float = 1.0       # Tokens per second

    @classmethod
    def from_settings(cls, settings) -> "RateLimiterConfig":
        return cls(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
            initial_tokens=settings.rate_limit_initial_tokens,
            refill_rate=settings.rate_limit_refill_rate,
        )


@dataclass
class RateLimiterStats:
    """Statistics for rate limiter operations."""
    admitted: int = 0
    denied: int = 0
    waits: int = 0
    total_wait_seconds: float = 0.0


class RateLimiter:
    """
    Token bucket + sliding window admission control.

    Cancellation while waiting in `acquire()` never consumes a token:
    a token is only taken at the moment of admission.
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimiterConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or RateLimiterConfig()
        self._clock = clock

        self._tokens = float(self.config.initial_tokens)
        self._last_refill = self._clock()
        self._window: Deque[float] = deque()
        self._stats = RateLimiterStats()
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self.config.initial_tokens

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self.config.refill_rate)
            self._last_refill = now

    def _purge_window(self, now: float) -> None:
        cutoff = now - self.config.window_seconds
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def _admit_locked(self) -> bool:
        now = self._clock()
        self._refill(now)
        self._purge_window(now)

        if len(self._window) >= self.config.max_requests:
            return False
        if self._tokens < 1.0:
            return False

        self._tokens -= 1.0
        self._window.append(now)
        return True

    def _wait_time_locked(self) -> float:
        """Seconds until one of the blocking gates could open."""
        now = self._clock()
        waits = []
        if self._tokens < 1.0 and self.config.refill_rate > 0:
            waits.append((1.0 - self._tokens) / self.config.refill_rate)
        if len(self._window) >= self.config.max_requests and self._window:
            waits.append(self._window[0] + self.config.window_seconds - now)
        if not waits:
            return MIN_WAIT_SECONDS
        return max(MIN_WAIT_SECONDS, min(waits))

    async def try_acquire(self) -> bool:
        """Admit one request if both gates pass. Never waits."""
        async with self._lock:
            admitted = self._admit_locked()
            if admitted:
                self._stats.admitted += 1
            else:
                self._stats.denied += 1
            return admitted

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Wait until admitted.

        Sleeps the minimum of "time to next token" and "time until the
        oldest window slot frees" between checks.

        Raises:
            RateLimitedError: If `timeout` elapses before admission
        """
        deadline = None if timeout is None else self._clock() + timeout

        while True:
            async with self._lock:
                if self._admit_locked():
                    self._stats.admitted += 1
                    return
                wait = self._wait_time_locked()

            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    async with self._lock:
                        self._stats.denied += 1
                    raise RateLimitedError(self.name, retry_after=wait)
                wait = min(wait, max(MIN_WAIT_SECONDS, remaining))

            self._stats.waits += 1
            self._stats.total_wait_seconds += wait
            logger.debug(f"RateLimiter '{self.name}': waiting {wait:.3f}s for admission")
            await asyncio.sleep(wait)

    async def time_until_available(self) -> float:
        """Seconds until a request could be admitted (0 if admissible now)."""
        async with self._lock:
            now = self._clock()
            self._refill(now)
            self._purge_window(now)
            if self._tokens >= 1.0 and len(self._window) < self.config.max_requests:
                return 0.0
            return self._wait_time_locked()

    def get_statistics(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        now = self._clock()
        cutoff = now - self.config.window_seconds
        return {
            "name": self.name,
            "available_tokens": round(self._tokens, 3),
            "requests_in_window": sum(1 for t in self._window if t > cutoff),
            "admitted": self._stats.admitted,
            "denied": self._stats.denied,
            "waits": self._stats.waits,
            "total_wait_seconds": round(self._stats.total_wait_seconds, 3),
            "config": {
                "max_requests": self.config.max_requests,
                "window_seconds": self.config.window_seconds,
                "initial_tokens": self.config.initial_tokens,
                "refill_rate": self.config.refill_rate,
            },
        }

    async def reset(self) -> None:
        """Refill the bucket and clear the window."""
        async with self._lock:
            self._tokens = float(self.capacity)
            self._last_refill = self._clock()
            self._window.clear()
            self._stats = RateLimiterStats()
            logger.info(f"RateLimiter '{self.name}': reset")
