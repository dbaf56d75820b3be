"""Service for executing API calls with automatic retries.

Implements bounded exponential backoff for transient failures: no response
received (network error, timeout) or a 429/503/504 status. Every other
failure is terminal and surfaces on the first attempt.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pixelclient.domain.events.api_events import (
    ApiCallFailed, ApiCallInitiated, ApiCallSucceeded, RetryScheduled, dispatch_event,
)
from pixelclient.domain.interfaces.clock import Clock
from pixelclient.domain.models.errors import NormalizedError
from pixelclient.infrastructure.config.settings import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF_MULTIPLIER,
    DEFAULT_RETRY_INITIAL_DELAY_MS,
    DEFAULT_RETRY_MAX_DELAY_MS,
)
from pixelclient.infrastructure.resilience.cancellation import CancellationToken
from pixelclient.infrastructure.resilience.error_normalizer import normalize_error
from pixelclient.infrastructure.timing.clock import SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 503, 504})


def is_transient_error(error: NormalizedError) -> bool:
    """Default retry predicate: no response received, or 429/503/504."""
    if error.status_code is None:
        return error.transport_code is not None
    return error.status_code in RETRYABLE_STATUS_CODES


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff configuration."""
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS
    initial_delay_ms: int = DEFAULT_RETRY_INITIAL_DELAY_MS
    max_delay_ms: int = DEFAULT_RETRY_MAX_DELAY_MS
    backoff_multiplier: float = DEFAULT_RETRY_BACKOFF_MULTIPLIER
    is_retryable: Callable[[NormalizedError], bool] = field(default=is_transient_error, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay_ms < 0:
            raise ValueError(f"initial_delay_ms must be >= 0, got {self.initial_delay_ms}")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= initial_delay_ms ({self.initial_delay_ms})"
            )
        if self.backoff_multiplier <= 1:
            raise ValueError(f"backoff_multiplier must be > 1, got {self.backoff_multiplier}")

    def next_delay_ms(self, current_delay_ms: int) -> int:
        return min(self.max_delay_ms, int(round(current_delay_ms * self.backoff_multiplier)))


class ApiRetryService:
    """Handles API call execution with retries and backoff."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            policy: Default policy for calls that do not pass their own.
            clock: Time source used for backoff sleeps.
        """
        self.policy = policy or RetryPolicy()
        self.clock = clock or SystemClock()

        logger.debug(
            f"ApiRetryService initialized: max_attempts={self.policy.max_attempts}, "
            f"initial_delay={self.policy.initial_delay_ms}ms, max_delay={self.policy.max_delay_ms}ms, "
            f"factor={self.policy.backoff_multiplier}"
        )

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        policy: Optional[RetryPolicy] = None,
        endpoint_name: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        **kwargs: Any
    ) -> T:
        """Executes an async function with retries.

        Args:
            func: The async function (API call) to execute.
            *args: Positional arguments for the function.
            policy: Overrides the service's default policy for this call.
            endpoint_name: Name used in logs and events (defaults to func name).
            cancel_token: When cancelled, no further attempt is started.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            NormalizedError: On a terminal failure, or once attempts are exhausted.
        """
        effective_policy = policy or self.policy
        effective_endpoint = endpoint_name or getattr(func, "__name__", "call")
        current_delay_ms = effective_policy.initial_delay_ms
        max_attempts = effective_policy.max_attempts

        for attempt in range(max_attempts):
            dispatch_event(ApiCallInitiated(endpoint=effective_endpoint, attempt_number=attempt + 1))
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                error = normalize_error(e)
                is_last = attempt == max_attempts - 1

                if is_last or not effective_policy.is_retryable(error):
                    if is_last and attempt > 0:
                        logger.error(
                            f"Max attempts ({max_attempts}) reached for {effective_endpoint}. "
                            f"Last error: {error.message}"
                        )
                    else:
                        logger.warning(
                            f"Non-retryable error calling {effective_endpoint} on attempt {attempt + 1}: "
                            f"{error.message}"
                        )
                    dispatch_event(ApiCallFailed(
                        endpoint=effective_endpoint,
                        error_message=error.message,
                        status_code=error.status_code,
                        attempts=attempt + 1,
                    ))
                    raise error from (None if error is e else e)

                if cancel_token is not None and cancel_token.cancelled:
                    logger.info(f"Retry of {effective_endpoint} cancelled after attempt {attempt + 1}.")
                    raise error from (None if error is e else e)

                logger.warning(
                    f"Retryable error calling {effective_endpoint} on attempt {attempt + 1}/{max_attempts}: "
                    f"{error.message}. Waiting {current_delay_ms}ms..."
                )
                dispatch_event(RetryScheduled(
                    endpoint=effective_endpoint, attempt_number=attempt + 1, delay_ms=current_delay_ms,
                ))
                if cancel_token is not None:
                    await cancel_token.sleep(self.clock.sleep, current_delay_ms / 1000)
                else:
                    await self.clock.sleep(current_delay_ms / 1000)
                current_delay_ms = effective_policy.next_delay_ms(current_delay_ms)

                if cancel_token is not None and cancel_token.cancelled:
                    logger.info(f"Retry of {effective_endpoint} cancelled during backoff.")
                    raise error from (None if error is e else e)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            dispatch_event(ApiCallSucceeded(endpoint=effective_endpoint, latency_ms=latency_ms, attempts=attempt + 1))
            return result

        # range(max_attempts) always returns or raises; max_attempts >= 1 is enforced by RetryPolicy
        raise NormalizedError(f"No attempt made for {effective_endpoint}")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    clock: Optional[Clock] = None,
) -> T:
    """Runs a zero-argument coroutine function under a retry policy."""
    return await ApiRetryService(policy=policy, clock=clock).execute_with_retry(operation)
