"""
Per-backend sliding-window rate limiter.

Admission is immediate: a call either records a timestamp or is rejected with
RateLimitExceeded. Expired timestamps are pruned lazily on each check, so no
background sweep is needed.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from image_broker.errors import RateLimitExceeded

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass
class RateLimiterConfig:
    """Configuration for the rate limiter.

    Attributes:
        max_requests: Admissions allowed per window (0 = unlimited)
        window_seconds: Length of the trailing window
        per_backend: Capacity overrides keyed by backend name
    """

    max_requests: int = 10
    window_seconds: float = 60.0
    per_backend: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_rpm(cls, rpm: int) -> RateLimiterConfig:
        """Create config allowing ``rpm`` requests per minute."""
        return cls(max_requests=rpm, window_seconds=60.0)

    @classmethod
    def unlimited(cls) -> RateLimiterConfig:
        """Create an unlimited rate limiter config."""
        return cls(max_requests=0)

    def capacity_for(self, backend: str) -> int:
        return self.per_backend.get(backend, self.max_requests)


@dataclass
class RateLimitWindow:
    """Request timestamps for one backend within the trailing window."""

    timestamps: deque[float] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def prune(self, now: float, window_seconds: float) -> None:
        cutoff = now - window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class RateLimiter:
    """Sliding-window admission control, independent per backend.

    Each backend has its own window guarded by its own lock, so concurrent
    admissions to one backend never exceed capacity and backends never
    contend with each other. No await happens while a window is mutated.

    Example:
        >>> limiter = RateLimiter(RateLimiterConfig(max_requests=10, window_seconds=60))
        >>> await limiter.admit("openai")   # raises RateLimitExceeded when full
    """

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            config: Rate limiter configuration
            clock: Monotonic clock (injectable for tests)
        """
        self._config = config or RateLimiterConfig()
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    def _window(self, backend: str) -> RateLimitWindow:
        # setdefault is atomic with respect to the event loop
        return self._windows.setdefault(backend, RateLimitWindow())

    async def admit(self, backend: str) -> None:
        """Record one admission for ``backend`` or reject it.

        Args:
            backend: Backend name

        Raises:
            RateLimitExceeded: If the window is already at capacity
        """
        capacity = self._config.capacity_for(backend)
        if capacity <= 0:
            return

        window = self._window(backend)
        async with window.lock:
            now = self._clock()
            window.prune(now, self._config.window_seconds)
            if len(window.timestamps) >= capacity:
                retry_after = window.timestamps[0] + self._config.window_seconds - now
                raise RateLimitExceeded(
                    backend,
                    limit=capacity,
                    window_seconds=self._config.window_seconds,
                    retry_after=max(retry_after, 0.0),
                )
            window.timestamps.append(now)

    async def try_admit(self, backend: str) -> bool:
        """Admit without raising.

        Returns:
            True if admitted, False if the window is full
        """
        try:
            await self.admit(backend)
        except RateLimitExceeded:
            return False
        return True

    def remaining(self, backend: str) -> int | None:
        """Admissions left in the current window (None when unlimited)."""
        capacity = self._config.capacity_for(backend)
        if capacity <= 0:
            return None
        window = self._windows.get(backend)
        if window is None:
            return capacity
        window.prune(self._clock(), self._config.window_seconds)
        return max(capacity - len(window.timestamps), 0)

    def reset(self, backend: str | None = None) -> None:
        """Forget recorded admissions for one backend, or all of them."""
        if backend is None:
            self._windows.clear()
        else:
            self._windows.pop(backend, None)
