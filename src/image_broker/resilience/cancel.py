"""
Request deadlines and cooperative cancellation.

Every request carries a CancelToken. The retry executor and the completion
tracker sleep through it, and backend calls are bounded by it, so an
abandoned request stops promptly and releases its pending timer.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from image_broker.errors import BrokerTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Deadline plus explicit cancellation for one request.

    Example:
        >>> token = CancelToken(timeout=30)
        >>> await token.sleep(1.5)          # raises BrokerTimeoutError on expiry
        >>> data = await token.run(client.get(url))
        >>> token.cancel()                  # from another task
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        parent: CancelToken | None = None,
    ) -> None:
        """Initialize cancellation token.

        Args:
            timeout: Optional deadline, in seconds from now
            clock: Monotonic clock (injectable for tests)
            parent: Token whose cancellation also cancels this one
        """
        self._clock = clock
        self._state = CancelState()
        self._event = asyncio.Event()
        self._children: list[CancelToken] = []
        self._parent = parent
        self._started = clock()

        deadline = None if timeout is None else self._started + max(timeout, 0.0)
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            parent._children.append(self)
            if parent.is_cancelled:
                self.cancel(parent.reason or CancelReason.USER_REQUEST)

    @property
    def deadline(self) -> float | None:
        """Absolute deadline on this token's clock, if any."""
        return self._deadline

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> float | None:
        """Seconds until the deadline (None without one, never negative)."""
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        if self._state.cancelled:
            return False

        self._state.cancelled = True
        self._state.reason = reason
        self._state.timestamp = time.time()
        self._state.metadata.update(metadata)
        self._event.set()

        for child in list(self._children):
            child.cancel(reason, **metadata)
        return True

    def release(self) -> None:
        """Detach from the parent token once the work it guarded is done."""
        if self._parent is not None:
            with contextlib.suppress(ValueError):
                self._parent._children.remove(self)
            self._parent = None

    @property
    def child_count(self) -> int:
        """Number of attached child tokens."""
        return len(self._children)

    @property
    def is_cancelled(self) -> bool:
        """Whether cancellation was requested or the deadline has passed."""
        if self._state.cancelled:
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel(CancelReason.TIMEOUT)
            return True
        return False

    @property
    def reason(self) -> CancelReason | None:
        return self._state.reason

    @property
    def state(self) -> CancelState:
        return self._state

    def raise_if_cancelled(self) -> None:
        """Raise the broker TimeoutError if cancelled or past the deadline.

        Raises:
            BrokerTimeoutError: If cancellation was requested
        """
        if self.is_cancelled:
            raise self._error()

    def _error(self) -> BrokerTimeoutError:
        if self._state.reason == CancelReason.TIMEOUT:
            message = f"Request deadline exceeded after {self.elapsed:.2f}s"
        else:
            reason = self._state.reason.value if self._state.reason else "unknown"
            message = f"Request cancelled ({reason})"
        return BrokerTimeoutError(message, elapsed=self.elapsed)

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early when the token is cancelled.

        Raises:
            BrokerTimeoutError: If cancelled or the deadline passes while sleeping
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        wait = seconds if remaining is None else min(seconds, remaining)
        if wait > 0:
            # wait_for cancels the inner waiter on timeout, no timer is left behind
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._event.wait(), timeout=wait)
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` bounded by this token.

        The awaitable is cancelled if the deadline passes or the token is
        cancelled first.

        Raises:
            BrokerTimeoutError: If the token fires before the awaitable finishes
        """
        self.raise_if_cancelled()
        work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work in done:
                return work.result()
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await work

        # wait() returned without the work finishing: the token fired
        self.cancel(CancelReason.TIMEOUT)
        raise self._error()

    def child(self, timeout: float | None = None) -> CancelToken:
        """Create a token with a tighter deadline that follows this one."""
        return CancelToken(timeout, clock=self._clock, parent=self)
