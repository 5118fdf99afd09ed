"""
Resilience module for image-broker-python.

Provides:
- RetryPolicy: Exponential backoff with jitter, driven by error retryability
- RateLimiter: Per-backend sliding-window admission control
- CancelToken: Request deadlines and cooperative cancellation
- FallbackChain: Ordered failover across candidate backends
"""

from image_broker.resilience.cancel import CancelReason, CancelState, CancelToken
from image_broker.resilience.fallback import FallbackChain, FallbackConfig, FallbackResult
from image_broker.resilience.rate_limiter import RateLimiter, RateLimiterConfig, RateLimitWindow
from image_broker.resilience.retry import (
    RetryConfig,
    RetryPolicy,
    RetryResult,
    is_retryable_error,
    with_retry,
)

__all__ = [
    # Cancellation
    "CancelReason",
    "CancelState",
    "CancelToken",
    # Fallback
    "FallbackChain",
    "FallbackConfig",
    "FallbackResult",
    "RateLimitWindow",
    # Rate limiting
    "RateLimiter",
    "RateLimiterConfig",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "RetryResult",
    "is_retryable_error",
    "with_retry",
]
