"""错误体系：提供图像代理的结构化错误类型。

Error hierarchy for image-broker-python.

Every error exposes ``kind`` and ``retryable`` so the orchestrator can tell
transient failures (fall back to the next backend) from permanent ones.
"""

from image_broker.errors.base import (
    AllBackendsFailed,
    BackendError,
    BrokerError,
    ConfigurationError,
    ErrorContext,
    NoCompatibleBackend,
    RateLimitExceeded,
    RetriesExhausted,
    ValidationError,
)
from image_broker.errors.base import (
    TimeoutError as BrokerTimeoutError,
)
from image_broker.errors.classification import (
    ErrorClass,
    classify_http_error,
    extract_error_message,
    is_retryable,
)

__all__ = [
    "AllBackendsFailed",
    "BackendError",
    "BrokerError",
    "BrokerTimeoutError",
    "ConfigurationError",
    # Classification
    "ErrorClass",
    "ErrorContext",
    "NoCompatibleBackend",
    "RateLimitExceeded",
    "RetriesExhausted",
    "ValidationError",
    "classify_http_error",
    "extract_error_message",
    "is_retryable",
]
