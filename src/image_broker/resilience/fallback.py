"""
Fallback chain over an ordered list of candidate backends.

The orchestrator hands over the candidate list from the selection engine and
one operation per candidate; the chain moves on only after a retryable
terminal failure and stops on the first permanent one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from image_broker.resilience.retry import is_retryable_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from image_broker.resilience.cancel import CancelToken

T = TypeVar("T")


@dataclass
class FallbackConfig:
    """Configuration for the fallback chain.

    Attributes:
        enabled: Whether to try later candidates after a retryable failure
        delay_between_targets_ms: Pause before moving to the next candidate
    """

    enabled: bool = True
    delay_between_targets_ms: int = 0

    @classmethod
    def disabled(cls) -> FallbackConfig:
        """Only the head candidate is ever tried."""
        return cls(enabled=False)


@dataclass
class FallbackResult:
    """Result of a fallback chain execution.

    Attributes:
        success: Whether operation succeeded
        value: Result value (if success)
        target_used: Name of target that succeeded
        targets_tried: Targets attempted, in order
        errors: Mapping of target names to their terminal errors
        stopped_early: The chain ended on a permanent error or with fallback disabled
    """

    success: bool
    value: Any = None
    target_used: str | None = None
    targets_tried: list[str] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)
    stopped_early: bool = False


class FallbackChain:
    """Try candidates in order until one succeeds.

    Example:
        >>> chain = FallbackChain()
        >>> result = await chain.execute(["ideogram", "openai"], call_backend)
        >>> result.target_used
        'ideogram'
    """

    def __init__(self, config: FallbackConfig | None = None) -> None:
        """Initialize fallback chain.

        Args:
            config: Fallback configuration
        """
        self._config = config or FallbackConfig()

    @property
    def config(self) -> FallbackConfig:
        return self._config

    def should_fallback(self, error: Exception) -> bool:
        """Whether an error lets the chain move on to the next candidate."""
        return self._config.enabled and is_retryable_error(error)

    async def execute(
        self,
        candidates: Sequence[str],
        operation: Callable[[str], Awaitable[T]],
        *,
        on_fallback: Callable[[str, str, Exception], None] | None = None,
        cancel: CancelToken | None = None,
    ) -> FallbackResult:
        """Execute operation through the candidate list.

        Args:
            candidates: Ordered target names
            operation: Async operation taking the target name
            on_fallback: Callback when falling back (from, to, error)
            cancel: Request token; once cancelled no further target is tried

        Returns:
            FallbackResult with outcome
        """
        errors: dict[str, Exception] = {}
        targets_tried: list[str] = []

        for index, target in enumerate(candidates):
            targets_tried.append(target)
            try:
                value = await operation(target)
            except Exception as e:
                errors[target] = e
                is_last = index + 1 >= len(candidates)
                expired = cancel is not None and cancel.is_cancelled
                if expired or not self.should_fallback(e) or is_last:
                    return FallbackResult(
                        success=False,
                        targets_tried=targets_tried,
                        errors=errors,
                        stopped_early=not is_last,
                    )
                if on_fallback:
                    on_fallback(target, candidates[index + 1], e)
                if self._config.delay_between_targets_ms > 0:
                    await asyncio.sleep(self._config.delay_between_targets_ms / 1000.0)
                continue

            return FallbackResult(
                success=True,
                value=value,
                target_used=target,
                targets_tried=targets_tried,
                errors=errors,
            )

        return FallbackResult(success=False, targets_tried=targets_tried, errors=errors)
