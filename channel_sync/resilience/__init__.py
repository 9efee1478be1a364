"""
Resilience primitives for remote channel-manager calls
"""

from .rate_limiter import TokenBucketRateLimiter, RateLimitDecision
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerStats, CircuitState
from .retry import AttemptResult, RetryPolicy

__all__ = [
    "TokenBucketRateLimiter",
    "RateLimitDecision",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    "AttemptResult",
    "RetryPolicy",
]
