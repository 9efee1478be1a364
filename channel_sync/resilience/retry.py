"""
Retry driver for remote calls
Each attempt returns an AttemptResult; tenacity loops on retryable failures with capped exponential backoff
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from channel_sync.config import SyncSettings
from channel_sync.errors import ChannelSyncError, RateLimitError
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.retry")

T = TypeVar("T")


@dataclass
class AttemptResult(Generic[T]):
    """Success value or classified failure of a single attempt"""
    value: Optional[T] = None
    error: Optional[ChannelSyncError] = None

    @classmethod
    def success(cls, value: T) -> "AttemptResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ChannelSyncError) -> "AttemptResult[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def should_retry(self) -> bool:
        return self.error is not None and self.error.retryable

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


class wait_retry_after_or_exponential(wait_base):
    """Honor a 429's advertised wait, otherwise fall back to exponential backoff."""

    def __init__(self, fallback: wait_base):
        self.fallback = fallback

    def __call__(self, retry_state) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            result = outcome.result()
            if isinstance(result, AttemptResult) and isinstance(result.error, RateLimitError):
                return result.error.retry_after
        return self.fallback(retry_state)


class RetryPolicy:
    """Retry configuration plus the driver that applies it"""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, settings: SyncSettings, **kwargs) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.retry_initial_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay_seconds,
            **kwargs,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, attempt_number: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.initial_delay * (self.multiplier ** (attempt_number - 1)), self.max_delay)

    def _wait(self) -> wait_base:
        return wait_retry_after_or_exponential(
            wait_exponential(multiplier=self.initial_delay, exp_base=self.multiplier, max=self.max_delay)
        )

    async def run(self, attempt: Callable[[], Awaitable[AttemptResult[T]]], operation: str = "request") -> AttemptResult[T]:
        """
        Run ``attempt`` until it succeeds, fails non-retryably, or attempts run out.

        Always returns the last AttemptResult; exceptions raised by ``attempt``
        itself are not caught and propagate to the caller.
        """

        def log_retry(retry_state) -> None:
            result = retry_state.outcome.result()
            logger.warning(
                "retry_attempt",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                wait_seconds=round(retry_state.next_action.sleep, 3),
                error_code=result.error.code if result.error else None,
                error=result.error.message if result.error else None,
            )

        def give_up(retry_state) -> AttemptResult[T]:
            result = retry_state.outcome.result()
            logger.error(
                "retry_exhausted",
                operation=operation,
                attempts=retry_state.attempt_number,
                error_code=result.error.code if result.error else None,
            )
            return result

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait(),
            retry=retry_if_result(lambda result: result.should_retry),
            before_sleep=log_retry,
            retry_error_callback=give_up,
            sleep=self._sleep,
        )
        return await retrying(attempt)
