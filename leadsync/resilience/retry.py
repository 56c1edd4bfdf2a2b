"""Retry executor: failure classification plus exponential backoff with jitter.

Transient failures (network errors, 408/429/5xx) are retried up to
``RetryPolicy.max_attempts`` times. A server-supplied ``Retry-After`` hint
overrides the computed backoff for that attempt. Anything else is terminal
and propagates on first occurrence. When attempts run out the original
exception is re-raised, never a wrapper.
"""

import asyncio
import logging
import random
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from leadsync.errors import RemoteAPIError, RunCancelled

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({
    408,  # Request Timeout
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
})

# Connection reset/refused, timeouts and DNS failures
NETWORK_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
)

JITTER_MIN = 0.9
JITTER_MAX = 1.1


@dataclass(frozen=True)
class RetryPolicy:
    """How hard to retry a single remote operation."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    retryable_status_codes: frozenset = DEFAULT_RETRYABLE_STATUS_CODES

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )


@dataclass
class RetryAttempt:
    """Details of a failed attempt that is about to be retried."""

    attempt: int
    delay: float  # seconds
    error: BaseException
    operation_name: str


def get_status_code(error: BaseException) -> Optional[int]:
    """Extract an HTTP-like status code from an error, if it carries one."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, RemoteAPIError):
        return error.status_code
    return None


def is_retryable_error(
    error: BaseException,
    retryable_codes: frozenset = DEFAULT_RETRYABLE_STATUS_CODES,
) -> bool:
    """Classify an error as transient (retry) or terminal (propagate)."""
    if isinstance(error, RunCancelled):
        return False

    if isinstance(error, NETWORK_ERRORS):
        return True

    status_code = get_status_code(error)
    if status_code is not None:
        return status_code in retryable_codes

    return False


def get_retry_after(error: BaseException) -> Optional[float]:
    """Server-supplied retry hint in seconds, or None.

    ``Retry-After`` may be a number of seconds or an HTTP date.
    """
    if isinstance(error, RemoteAPIError):
        return error.retry_after

    if not isinstance(error, httpx.HTTPStatusError):
        return None

    retry_after = error.response.headers.get("retry-after")
    if not retry_after:
        return None

    try:
        return max(0.0, float(retry_after))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def calculate_backoff(
    attempt: int,
    base_delay: float,
    max_delay: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retrying after failed attempt ``attempt`` (1-based).

    ``min(max_delay, base_delay * 2^(attempt-1))`` scaled by a jitter
    factor drawn uniformly from [0.9, 1.1].
    """
    capped = min(max_delay, base_delay * (2 ** (attempt - 1)))
    jitter = JITTER_MIN + rng() * (JITTER_MAX - JITTER_MIN)
    return capped * jitter


class RetryExecutor:
    """Run zero-argument async operations under a RetryPolicy."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[Callable[[], float]] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.random

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: Optional[RetryPolicy] = None,
        operation_name: str = "operation",
        on_retry: Optional[Callable[[RetryAttempt], None]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Execute ``operation``, retrying transient failures.

        Args:
            operation: Zero-argument coroutine function
            policy: Overrides the executor's default policy
            operation_name: Name used in logs and retry callbacks
            on_retry: Called before each backoff sleep; observability only
            cancel_event: Aborts the backoff sleep with RunCancelled when set

        Returns:
            Whatever ``operation`` returns

        Raises:
            The operation's own exception when it is terminal or attempts run out
        """
        policy = policy or self.policy

        def wait(retry_state) -> float:
            error = retry_state.outcome.exception()
            hint = get_retry_after(error)
            if hint is not None:
                return hint
            return calculate_backoff(
                retry_state.attempt_number,
                policy.base_delay,
                policy.max_delay,
                self._rng,
            )

        def before_sleep(retry_state):
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep
            logger.info(
                f"Retrying {operation_name} after transient error "
                f"(attempt {retry_state.attempt_number}/{policy.max_attempts}, "
                f"status={get_status_code(error)}, delay={delay:.2f}s): {error}"
            )
            if on_retry is None:
                return
            try:
                on_retry(RetryAttempt(
                    attempt=retry_state.attempt_number,
                    delay=delay,
                    error=error,
                    operation_name=operation_name,
                ))
            except Exception as e:
                logger.warning(f"on_retry callback for {operation_name} failed: {e}")

        async def sleep(seconds: float):
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(f"Cancelled before retrying {operation_name}")
            await self._sleep(seconds)

        attempts = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(
                lambda e: is_retryable_error(e, policy.retryable_status_codes)
            ),
            before_sleep=before_sleep,
            sleep=sleep,
            reraise=True,
        )

        try:
            async for attempt_state in attempts:
                with attempt_state:
                    return await operation()
        except RunCancelled:
            raise
        except Exception as e:
            if is_retryable_error(e, policy.retryable_status_codes):
                logger.error(
                    f"{operation_name} failed after {policy.max_attempts} attempts: {e}"
                )
            else:
                logger.warning(f"{operation_name} failed with non-retryable error: {e}")
            raise
