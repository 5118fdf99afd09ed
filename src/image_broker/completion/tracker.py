"""
Async completion tracker for submit-then-poll backends.

Normalizes heterogeneous job protocols into one state machine:
Submitted -> Pending -> {Ready | Failed}. Backends supply two callables, one
that checks a job handle and one that extracts the final result, and pick a
PollConfig that suits their latency profile.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from image_broker.errors import BackendError, BrokerTimeoutError
from image_broker.resilience.retry import RetryConfig, with_retry
from image_broker.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from image_broker.resilience.cancel import CancelToken

T = TypeVar("T")

logger = get_logger(__name__)


class PollStatus(str, Enum):
    """Lifecycle of an async job."""

    SUBMITTED = "submitted"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PollStatus.READY, PollStatus.FAILED)


@dataclass
class PollState(Generic[T]):
    """State of one async completion.

    Attributes:
        handle: Backend job handle
        backend: Backend name
        status: Current status
        attempt: Status checks made so far
        next_delay: Seconds until the next check
        payload: Backend response for the latest check
        error: Failure message when status is FAILED
        retryable: Whether a FAILED job may succeed elsewhere or later
    """

    handle: str
    backend: str = ""
    status: PollStatus = PollStatus.SUBMITTED
    attempt: int = 0
    next_delay: float = 0.0
    payload: T | None = None
    error: str | None = None
    retryable: bool = False

    @classmethod
    def pending(cls, handle: str, payload: Any = None) -> PollState[Any]:
        return cls(handle=handle, status=PollStatus.PENDING, payload=payload)

    @classmethod
    def ready(cls, handle: str, payload: Any = None) -> PollState[Any]:
        return cls(handle=handle, status=PollStatus.READY, payload=payload)

    @classmethod
    def failed(
        cls,
        handle: str,
        error: str,
        *,
        retryable: bool = False,
        payload: Any = None,
    ) -> PollState[Any]:
        return cls(
            handle=handle,
            status=PollStatus.FAILED,
            error=error,
            retryable=retryable,
            payload=payload,
        )


@dataclass
class PollConfig:
    """Polling schedule for one backend.

    The delay before check ``n`` (0-based, n >= 1) is
    ``min(initial_delay_ms * multiplier**(n-1), max_delay_ms)``.

    Attributes:
        initial_delay_ms: Delay before the second check
        max_delay_ms: Upper bound for the delay
        multiplier: Growth factor between consecutive delays
        max_attempts: Maximum number of status checks
        max_wait_seconds: Wall-clock ceiling for the whole wait (None = none)
        status_retry: Retry budget for each individual status check
    """

    initial_delay_ms: float = 1000
    max_delay_ms: float = 5000
    multiplier: float = 1.5
    max_attempts: int = 60
    max_wait_seconds: float | None = 300.0
    status_retry: RetryConfig = field(default_factory=RetryConfig.for_polling)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def fast(cls) -> PollConfig:
        """Sub-second polling for low-latency queues."""
        return cls(initial_delay_ms=100, max_delay_ms=1000, multiplier=1.5, max_attempts=120, max_wait_seconds=120.0)

    @classmethod
    def standard(cls) -> PollConfig:
        """About one check per second."""
        return cls(initial_delay_ms=1000, max_delay_ms=2000, multiplier=1.2, max_attempts=60, max_wait_seconds=180.0)

    @classmethod
    def slow(cls) -> PollConfig:
        """Multi-second intervals for long-running jobs."""
        return cls(initial_delay_ms=2000, max_delay_ms=10000, multiplier=1.5, max_attempts=30, max_wait_seconds=300.0)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after check ``attempt`` (0-based)."""
        return min(self.initial_delay_ms * (self.multiplier**attempt), self.max_delay_ms) / 1000.0


class CompletionTracker:
    """Drives a submitted job to a terminal state.

    Example:
        >>> tracker = CompletionTracker(PollConfig.slow())
        >>> result = await tracker.wait(
        ...     job_id,
        ...     check_status=self._check_job,
        ...     extract_result=self._download_result,
        ...     cancel=cancel,
        ...     backend="bfl",
        ... )
    """

    def __init__(
        self,
        config: PollConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize tracker.

        Args:
            config: Polling schedule
            clock: Monotonic clock for the wall-clock ceiling
        """
        self._config = config or PollConfig()
        self._clock = clock

    @property
    def config(self) -> PollConfig:
        return self._config

    async def wait(
        self,
        handle: str,
        check_status: Callable[[str], Awaitable[PollState[Any]]],
        extract_result: Callable[[PollState[Any]], Awaitable[T] | T],
        *,
        cancel: CancelToken | None = None,
        backend: str = "",
    ) -> T:
        """Poll ``handle`` until it is ready, failed, or out of budget.

        Args:
            handle: Job handle returned on submit
            check_status: Returns the job's current PollState
            extract_result: Builds the final result from the READY state
            cancel: Request cancel token, honored between checks
            backend: Backend name for errors and logs

        Returns:
            The extracted result

        Raises:
            BackendError: The job reached FAILED (retryable only if the state says so)
            BrokerTimeoutError: Poll budget or deadline exhausted (retryable)
            RetriesExhausted: A single status check kept failing transiently
        """
        cfg = self._config
        started = self._clock()
        state: PollState[Any] = PollState(handle=handle, backend=backend)

        for attempt in range(cfg.max_attempts):
            if attempt > 0:
                delay = cfg.delay_for(attempt - 1)
                if cfg.max_wait_seconds is not None:
                    elapsed = self._clock() - started
                    if elapsed + delay > cfg.max_wait_seconds:
                        break
                state = replace(state, next_delay=delay)
                if cancel is not None:
                    await cancel.sleep(delay)
                else:
                    await asyncio.sleep(delay)

            checked = await with_retry(
                lambda: check_status(handle),
                cfg.status_retry,
                cancel=cancel,
            )
            state = replace(checked, handle=handle, backend=backend, attempt=attempt + 1)
            logger.debug(
                "Polled async job",
                backend=backend,
                handle=handle,
                attempt=state.attempt,
                status=state.status.value,
            )

            if state.status == PollStatus.READY:
                result = extract_result(state)
                if inspect.isawaitable(result):
                    return await result
                return result

            if state.status == PollStatus.FAILED:
                raise BackendError(
                    f"{backend or 'backend'} job {handle} failed: {state.error or 'no details'}",
                    backend=backend,
                    retryable=state.retryable,
                    raw_error=state.payload,
                )

        elapsed = self._clock() - started
        raise BrokerTimeoutError(
            f"{backend or 'backend'} job {handle} did not complete after "
            f"{state.attempt} checks ({elapsed:.1f}s)",
            backend=backend or None,
            elapsed=elapsed,
        )
