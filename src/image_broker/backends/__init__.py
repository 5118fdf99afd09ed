"""
Backend adapters for image-broker-python.

Provides:
- Backend: Protocol every adapter satisfies
- BackendCapabilities: Size limits, operations and models of a backend
- BackendRegistry: Lazily constructed, memoized backends keyed by name
- BackendHttpClient: httpx wrapper mapping failures onto BackendErrors
- One adapter per supported image service, plus a credential-free mock
"""

from image_broker.backends.base import Backend, BackendCapabilities
from image_broker.backends.bfl import BFLBackend
from image_broker.backends.clipdrop import ClipdropBackend
from image_broker.backends.fal import FalBackend
from image_broker.backends.gemini import GeminiBackend
from image_broker.backends.http import BackendHttpClient
from image_broker.backends.ideogram import IdeogramBackend
from image_broker.backends.mock import MockBackend
from image_broker.backends.openai import OpenAIBackend
from image_broker.backends.recraft import RecraftBackend
from image_broker.backends.registry import BackendFactory, BackendRegistry
from image_broker.backends.replicate import ReplicateBackend
from image_broker.backends.stability import StabilityBackend

# Registration order is the order reported by status()
BUILTIN_BACKENDS: dict[str, BackendFactory] = {
    "mock": MockBackend,
    "openai": OpenAIBackend,
    "stability": StabilityBackend,
    "replicate": ReplicateBackend,
    "gemini": GeminiBackend,
    "ideogram": IdeogramBackend,
    "bfl": BFLBackend,
    "fal": FalBackend,
    "recraft": RecraftBackend,
    "clipdrop": ClipdropBackend,
}

__all__ = [
    # Contract
    "Backend",
    "BackendCapabilities",
    "BackendFactory",
    "BackendHttpClient",
    "BackendRegistry",
    "BUILTIN_BACKENDS",
    # Adapters
    "BFLBackend",
    "ClipdropBackend",
    "FalBackend",
    "GeminiBackend",
    "IdeogramBackend",
    "MockBackend",
    "OpenAIBackend",
    "RecraftBackend",
    "ReplicateBackend",
    "StabilityBackend",
]
