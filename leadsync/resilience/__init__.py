"""Rate limiting and retry primitives shared by all remote calls."""

from .rate_limiter import RateLimiter, RateLimiterStatus, LimiterSet, build_limiters
from .retry import (
    RetryExecutor,
    RetryPolicy,
    RetryAttempt,
    calculate_backoff,
    get_retry_after,
    is_retryable_error,
)

__all__ = [
    "RateLimiter",
    "RateLimiterStatus",
    "LimiterSet",
    "build_limiters",
    "RetryExecutor",
    "RetryPolicy",
    "RetryAttempt",
    "calculate_backoff",
    "get_retry_after",
    "is_retryable_error",
]
