"""
Retry executor with exponential backoff and jitter.

Backend-agnostic: the orchestrator wraps each backend call with it and the
completion tracker wraps each status check. Retryability is read from the
error's ``retryable`` attribute; anything without one is permanent.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from image_broker.errors import RetriesExhausted
from image_broker.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from image_broker.resilience.cancel import CancelToken

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for the retry executor.

    Attributes:
        max_attempts: Total invocations allowed, including the first (>= 1)
        base_delay_ms: Delay before the first retry, in milliseconds
        max_delay_ms: Upper bound for the backoff delay, in milliseconds
        exponential_base: Growth factor between consecutive delays
        jitter_fraction: Random extra delay, as a fraction of the backoff delay
    """

    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 10000
    exponential_base: float = 2.0
    jitter_fraction: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.jitter_fraction < 0:
            raise ValueError("jitter_fraction must be non-negative")

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that makes exactly one attempt."""
        return cls(max_attempts=1)

    @classmethod
    def for_polling(cls) -> RetryConfig:
        """Short budget for a single status check of an async job."""
        return cls(max_attempts=3, base_delay_ms=500, max_delay_ms=2000)


@dataclass
class RetryResult:
    """Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        attempts: Number of invocations made
        total_delay_ms: Total backoff delay in milliseconds
        exhausted: Failed with a retryable error after spending the whole budget
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    attempts: int = 0
    total_delay_ms: float = 0.0
    exhausted: bool = False


def is_retryable_error(error: BaseException) -> bool:
    """Whether an error is tagged transient."""
    return bool(getattr(error, "retryable", False))


class RetryPolicy:
    """Retry executor with exponential backoff and jitter.

    ``delay = min(base * exponential_base**attempt, max) + uniform(0, jitter)``
    where jitter is ``jitter_fraction`` of the capped delay. A server
    ``retry_after`` hint replaces the computed delay (still capped).

    Example:
        >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
        >>> result = await policy.execute(lambda: backend.generate(request))
        >>> if result.success:
        ...     print(result.value)
        ... else:
        ...     print(f"Failed after {result.attempts} attempts")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
            rng: Random source for jitter (seedable for tests)
        """
        self._config = config or RetryConfig()
        self._rng = rng or random.Random()

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Calculate delay after a failed attempt.

        Args:
            attempt: Failed attempt number (0-based)
            retry_after: Optional retry-after hint from server, in seconds

        Returns:
            Delay in seconds
        """
        cfg = self._config
        if retry_after is not None and retry_after > 0:
            return min(retry_after * 1000.0, cfg.max_delay_ms) / 1000.0

        delay_ms = min(cfg.base_delay_ms * (cfg.exponential_base**attempt), cfg.max_delay_ms)
        if cfg.jitter_fraction > 0 and delay_ms > 0:
            delay_ms += self._rng.uniform(0, delay_ms * cfg.jitter_fraction)
        return delay_ms / 1000.0

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Check if an error should trigger another attempt.

        Args:
            error: The exception that occurred
            attempt: Failed attempt number (0-based)

        Returns:
            True if should retry
        """
        if attempt + 1 >= self._config.max_attempts:
            return False
        return is_retryable_error(error)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        cancel: CancelToken | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        The cancel token is checked before every attempt, and backoff sleeps
        go through it so an expired deadline ends the wait immediately.

        Args:
            operation: Async operation to execute
            cancel: Optional request cancel token
            on_retry: Optional callback called before each retry

        Returns:
            RetryResult with success status and value/error
        """
        total_delay = 0.0
        attempt = 0

        while True:
            try:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                    result = await cancel.run(operation())
                else:
                    result = await operation()
                return RetryResult(
                    success=True,
                    value=result,
                    attempts=attempt + 1,
                    total_delay_ms=total_delay * 1000,
                )
            except Exception as e:
                attempt += 1
                deadline_hit = cancel is not None and cancel.is_cancelled

                if deadline_hit or not self.should_retry(e, attempt - 1):
                    return RetryResult(
                        success=False,
                        error=e,
                        attempts=attempt,
                        total_delay_ms=total_delay * 1000,
                        exhausted=(
                            not deadline_hit
                            and is_retryable_error(e)
                            and attempt >= self._config.max_attempts
                        ),
                    )

                delay = self.calculate_delay(attempt - 1, getattr(e, "retry_after", None))
                total_delay += delay

                logger.debug(
                    "Retrying after error",
                    attempt=attempt,
                    delay_ms=round(delay * 1000, 1),
                    error=str(e),
                )
                if on_retry:
                    on_retry(attempt, e, delay)

                try:
                    if cancel is not None:
                        await cancel.sleep(delay)
                    else:
                        await asyncio.sleep(delay)
                except Exception as sleep_error:
                    # Deadline expired during backoff
                    return RetryResult(
                        success=False,
                        error=sleep_error,
                        attempts=attempt,
                        total_delay_ms=total_delay * 1000,
                    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    cancel: CancelToken | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Execute an operation with retry, raising on failure.

    Args:
        operation: Async operation to execute
        config: Retry configuration
        cancel: Optional request cancel token
        on_retry: Optional callback called before each retry

    Returns:
        Operation result

    Raises:
        RetriesExhausted: A retryable error persisted through every attempt
        Exception: A permanent error, re-raised after its single invocation,
            or the broker TimeoutError when the deadline expired
    """
    policy = RetryPolicy(config)
    result = await policy.execute(operation, cancel=cancel, on_retry=on_retry)

    if result.success:
        return result.value
    if result.exhausted:
        raise RetriesExhausted(result.error, result.attempts)  # type: ignore[arg-type]
    raise result.error  # type: ignore[misc]
