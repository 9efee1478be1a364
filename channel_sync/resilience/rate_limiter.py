"""
Token bucket rate limiter for remote account requests
Non-blocking admission control; callers decide whether to wait or fail
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.rate_limiter")


@dataclass
class RateLimitDecision:
    """Outcome of a single try_consume() call"""
    allowed: bool
    remaining: int
    retry_after_ms: int = 0


class TokenBucketRateLimiter:
    """
    In-memory token bucket with capacity C and linear refill of C per window.

    State is scoped to one process; it is reset on restart.
    """

    def __init__(
        self,
        capacity: int = 100,
        window_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
        name: Optional[str] = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.capacity = capacity
        self.window_seconds = window_seconds
        self.name = name or f"bucket_{id(self)}"
        self._clock = clock or time.monotonic
        self._window_ms = window_seconds * 1000.0
        self._tokens = float(capacity)
        self._last_refill = self._clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = max(0.0, (now - self._last_refill) * 1000.0)
        if elapsed_ms > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed_ms * self.capacity / self._window_ms)
            self._last_refill = now

    def try_consume(self) -> RateLimitDecision:
        """Take one token if available; never blocks."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return RateLimitDecision(allowed=True, remaining=int(self._tokens))

        wait_ms = self.time_until_next_token()
        logger.debug("rate_limit_exhausted", limiter=self.name, retry_after_ms=wait_ms)
        return RateLimitDecision(allowed=False, remaining=0, retry_after_ms=wait_ms)

    def time_until_next_token(self) -> int:
        """Milliseconds until one full token is available."""
        self._refill()
        if self._tokens >= 1:
            return 0
        return math.ceil((1 - self._tokens) * self._window_ms / self.capacity)

    @property
    def available_tokens(self) -> int:
        self._refill()
        return int(self._tokens)

    def stats(self) -> Dict[str, float]:
        return {
            "capacity": self.capacity,
            "window_seconds": self.window_seconds,
            "available_tokens": self.available_tokens,
        }
