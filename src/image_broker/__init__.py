"""图像生成代理：在多个图像服务之间选择、限流、缓存、重试与回退。

image-broker-python: request broker for image generation services.

Routes generation and edit requests to one of several image backends,
choosing candidates from the prompt and wrapping every call in rate
limiting, result caching, retries and fallback.
"""
from __future__ import annotations

from image_broker._features import HAS_KEYRING
from image_broker.backends import Backend, BackendCapabilities, BackendRegistry
from image_broker.client import ImageBroker, ImageBrokerBuilder, ToolHandlers
from image_broker.config import BrokerSettings, DictConfigSource, EnvConfigSource
from image_broker.errors import (
    AllBackendsFailed,
    BackendError,
    BrokerError,
    BrokerTimeoutError,
    ConfigurationError,
    NoCompatibleBackend,
    RateLimitExceeded,
    RetriesExhausted,
    ValidationError,
)
from image_broker.resilience import CancelToken
from image_broker.routing import SelectionEngine, SelectionPolicy
from image_broker.types import GeneratedImage, GenerationRequest, GenerationResult, ImageData

__version__ = "0.1.0"

__all__ = [
    # Client
    "ImageBroker",
    "ImageBrokerBuilder",
    "ToolHandlers",
    # Backends
    "Backend",
    "BackendCapabilities",
    "BackendRegistry",
    # Configuration
    "BrokerSettings",
    "DictConfigSource",
    "EnvConfigSource",
    # Feature flags
    "HAS_KEYRING",
    # Errors
    "AllBackendsFailed",
    "BackendError",
    "BrokerError",
    "BrokerTimeoutError",
    "ConfigurationError",
    "NoCompatibleBackend",
    "RateLimitExceeded",
    "RetriesExhausted",
    "ValidationError",
    # Resilience
    "CancelToken",
    # Selection
    "SelectionEngine",
    "SelectionPolicy",
    # Types
    "GeneratedImage",
    "GenerationRequest",
    "GenerationResult",
    "ImageData",
    # Version
    "__version__",
]
