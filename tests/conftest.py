"""Root pytest fixtures for image-broker-python tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from image_broker.backends import BackendCapabilities, BackendRegistry
from image_broker.client import ImageBroker
from image_broker.config import BrokerSettings, DictConfigSource
from image_broker.errors import BackendError, ErrorClass
from image_broker.resilience import RetryConfig
from image_broker.types import GeneratedImage, GenerationResult

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def transient_error(backend: str, message: str = "service unavailable") -> BackendError:
    """A retryable backend failure (as from a 503)."""
    return BackendError(
        f"{backend}: {message}",
        backend=backend,
        retryable=True,
        status_code=503,
        error_class=ErrorClass.OVERLOADED,
    )


def permanent_error(backend: str, message: str = "invalid prompt") -> BackendError:
    """A permanent backend failure (as from a 400)."""
    return BackendError(
        f"{backend}: {message}",
        backend=backend,
        retryable=False,
        status_code=400,
        error_class=ErrorClass.INVALID_REQUEST,
    )


class FakeBackend:
    """In-memory backend that records calls and fails on demand.

    Errors in ``failures`` are raised in order, one per call; once the list is
    empty every call succeeds, unless ``always_fail`` is set.
    """

    def __init__(
        self,
        name: str,
        *,
        failures: list[Exception] | None = None,
        always_fail: Exception | None = None,
        max_size: int = 2048,
        supports_edit: bool = False,
        configured: bool = True,
        payload: bytes | None = None,
    ) -> None:
        self.name = name
        self.failures = list(failures or [])
        self.always_fail = always_fail
        self.max_size = max_size
        self.supports_edit = supports_edit
        self.configured = configured
        self.payload = payload
        self.calls = 0
        self.requests: list[Any] = []
        self.closed = False

    def is_configured(self) -> bool:
        return self.configured

    def required_credentials(self) -> list[str]:
        return [f"{self.name.upper()}_API_KEY"]

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=self.supports_edit,
            max_width=self.max_size,
            max_height=self.max_size,
            supported_models=(f"{self.name}-model",),
            default_model=f"{self.name}-model",
        )

    async def _serve(self, request: Any) -> GenerationResult:
        self.calls += 1
        self.requests.append(request)
        if self.always_fail is not None:
            raise self.always_fail
        if self.failures:
            raise self.failures.pop(0)
        data = self.payload if self.payload is not None else PNG_HEADER + self.name.encode()
        return GenerationResult(
            images=(GeneratedImage(data=data, format="png"),),
            backend=self.name,
            model=f"{self.name}-model",
        )

    async def generate(self, request: Any, *, cancel: Any = None) -> GenerationResult:
        return await self._serve(request)

    async def edit(self, request: Any, *, cancel: Any = None) -> GenerationResult:
        return await self._serve(request)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Three attempts with millisecond backoff."""
    return RetryConfig(max_attempts=3, base_delay_ms=1, max_delay_ms=1, jitter_fraction=0)


@pytest.fixture
def make_broker(fast_retry: RetryConfig) -> Callable[..., ImageBroker]:
    """Build a broker over fake backends.

    Backends are registered in the given order; settings keywords are passed
    to BrokerSettings.
    """

    def build(*backends: FakeBackend, retry: RetryConfig | None = None, **settings: Any) -> ImageBroker:
        registry = BackendRegistry(DictConfigSource())
        for backend in backends:
            registry.register_instance(backend)
        settings.setdefault("request_timeout", 10.0)
        return ImageBroker(
            registry,
            settings=BrokerSettings(**settings),
            retry_config=retry or fast_retry,
        )

    return build


@pytest.fixture
def fake_backend() -> type[FakeBackend]:
    """The FakeBackend class, for tests that build their own."""
    return FakeBackend


@pytest.fixture
def errors() -> dict[str, Callable[..., BackendError]]:
    """Factories for transient and permanent backend errors."""
    return {"transient": transient_error, "permanent": permanent_error}
