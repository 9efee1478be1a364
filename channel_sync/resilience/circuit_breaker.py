"""
Circuit breaker for remote account calls
Three-state guard (closed, open, half-open) that stops calling a failing channel manager
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from channel_sync import metrics
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration"""
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds
    half_open_max_requests: int = 3
    name: Optional[str] = None


class CircuitBreakerStats(BaseModel):
    """Circuit breaker statistics"""
    name: str
    state: CircuitState
    failure_count: int
    half_open_successes: int
    total_requests: int
    total_failures: int
    total_successes: int
    opened_at: Optional[datetime] = None
    reset_at: Optional[datetime] = None
    last_failure_time: Optional[datetime] = None


def _to_datetime(timestamp: Optional[float]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class CircuitBreaker:
    """
    In-memory circuit breaker owned by one ResilientClient.

    CLOSED -> OPEN after ``failure_threshold`` consecutive failures.
    OPEN -> HALF_OPEN once ``reset_timeout`` has passed since the last failure.
    HALF_OPEN -> CLOSED after ``half_open_max_requests`` consecutive successes,
    HALF_OPEN -> OPEN on any failure.
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None, clock: Optional[Callable[[], float]] = None):
        self.config = config or CircuitBreakerConfig()
        self.name = self.config.name or f"circuit_{id(self)}"
        self._clock = clock or time.time

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_successes = 0
        self._last_failure_time: Optional[float] = None
        self._opened_at: Optional[float] = None

        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0

        metrics.circuit_state.labels(account=self.name).set(_STATE_GAUGE_VALUES[self._state])

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def opened_at(self) -> Optional[datetime]:
        return _to_datetime(self._opened_at)

    @property
    def reset_at(self) -> Optional[datetime]:
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return None
        return _to_datetime(self._last_failure_time + self.config.reset_timeout)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        metrics.circuit_state.labels(account=self.name).set(_STATE_GAUGE_VALUES[new_state])

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._half_open_successes = 0
            logger.warning(
                "circuit_breaker_opened",
                name=self.name,
                from_state=old_state.value,
                failure_count=self._failure_count,
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_successes = 0
            logger.info("circuit_breaker_half_open", name=self.name)
        else:
            self._failure_count = 0
            self._half_open_successes = 0
            self._opened_at = None
            logger.info("circuit_breaker_closed", name=self.name)

    def can_proceed(self) -> bool:
        """Whether a request may be attempted right now."""
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure_time or 0)
            if elapsed >= self.config.reset_timeout:
                self._transition(CircuitState.HALF_OPEN)
                return True
            return False

        # HALF_OPEN: trial calls until enough consecutive successes close the circuit
        return self._half_open_successes < self.config.half_open_max_requests

    def record_success(self) -> None:
        self._total_requests += 1
        self._total_successes += 1

        if self._state == CircuitState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self.config.half_open_max_requests:
                self._transition(CircuitState.CLOSED)
        else:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._total_requests += 1
        self._total_failures += 1
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force the circuit closed (administrative use)."""
        self._transition(CircuitState.CLOSED)
        self._last_failure_time = None

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            half_open_successes=self._half_open_successes,
            total_requests=self._total_requests,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            opened_at=self.opened_at,
            reset_at=self.reset_at,
            last_failure_time=_to_datetime(self._last_failure_time),
        )
