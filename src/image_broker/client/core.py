"""核心代理实现：选择后端、限流、缓存、重试与回退的统一入口。

Core ImageBroker implementation.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from image_broker.backends.registry import BackendRegistry
from image_broker.cache import CacheConfig, ResultCache
from image_broker.config import BrokerSettings, EnvConfigSource
from image_broker.errors import (
    AllBackendsFailed,
    ConfigurationError,
    NoCompatibleBackend,
    ValidationError,
)
from image_broker.resilience import (
    CancelToken,
    FallbackChain,
    FallbackConfig,
    RateLimiter,
    RateLimiterConfig,
    RetryConfig,
    with_retry,
)
from image_broker.routing import SelectionEngine, SelectionPolicy
from image_broker.telemetry.logger import get_logger, log_context, truncate_prompt

if TYPE_CHECKING:
    from image_broker.client.builder import ImageBrokerBuilder
    from image_broker.config.source import ConfigSource
    from image_broker.routing import Recommendations
    from image_broker.types.request import GenerationRequest
    from image_broker.types.result import GenerationResult

logger = get_logger(__name__)


class ImageBroker:
    """Single entry point for image generation and editing.

    Each call validates the request, orders candidate backends, and walks
    them through rate limiting, the result cache, retries and fallback.

    Example:
        >>> broker = ImageBroker.from_env()
        >>> result = await broker.generate(GenerationRequest(prompt="logo with text 'Acme'"))
        >>> result.backend
        'ideogram'

        >>> # Explicit backend with a deadline
        >>> result = await broker.generate(
        ...     GenerationRequest(prompt="a red fox", backend="openai"),
        ...     timeout=60,
        ... )
    """

    def __init__(
        self,
        registry: BackendRegistry,
        *,
        settings: BrokerSettings | None = None,
        engine: SelectionEngine | None = None,
        rate_limiter: RateLimiter | None = None,
        cache: ResultCache | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        """Initialize the broker.

        Use ImageBroker.from_env() or ImageBrokerBuilder for typical construction.

        Args:
            registry: Backends available to this broker
            settings: Broker tunables
            engine: Selection engine (default policy when omitted)
            rate_limiter: Per-backend admission control
            cache: Result cache
            retry_config: Retry budget for each backend call
        """
        self._registry = registry
        self._settings = settings or BrokerSettings()
        self._engine = engine or SelectionEngine()
        self._rate_limiter = rate_limiter or RateLimiter(
            RateLimiterConfig(
                max_requests=self._settings.rate_limit,
                window_seconds=self._settings.rate_window_seconds,
            )
        )
        if cache is None:
            cache = ResultCache(
                CacheConfig(
                    ttl_seconds=self._settings.cache_ttl_seconds,
                    max_entries=self._settings.cache_max_entries,
                )
            )
        self._cache = cache
        self._retry_config = retry_config or RetryConfig()
        self._fallback = FallbackChain(FallbackConfig(enabled=self._settings.fallback_enabled))

    @classmethod
    def from_env(cls, config: ConfigSource | None = None) -> ImageBroker:
        """Build a broker with the built-in backends and settings from ``config``.

        Args:
            config: Configuration source (environment plus keyring by default)
        """
        source = config or EnvConfigSource()
        settings = BrokerSettings.from_source(source)
        policy = SelectionPolicy.from_yaml(settings.policy_file) if settings.policy_file else None
        return cls(
            BackendRegistry.default(source, http_timeout=settings.http_timeout),
            settings=settings,
            engine=SelectionEngine(policy),
        )

    @classmethod
    def builder(cls) -> ImageBrokerBuilder:
        """Get a builder for advanced configuration."""
        from image_broker.client.builder import ImageBrokerBuilder

        return ImageBrokerBuilder()

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def settings(self) -> BrokerSettings:
        return self._settings

    @property
    def engine(self) -> SelectionEngine:
        return self._engine

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    async def generate(
        self,
        request: GenerationRequest,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Generate images for a text prompt.

        Args:
            request: Generation request
            timeout: Deadline in seconds (defaults to settings.request_timeout)
            cancel: Caller token; cancelling it aborts the request

        Returns:
            Result from the first candidate backend that succeeded

        Raises:
            ValidationError: Bad request shape or bounds
            ConfigurationError: No backend is configured for the operation
            NoCompatibleBackend: No configured backend accepts the dimensions
            AllBackendsFailed: Every attempted candidate failed
            BrokerError: The only attempted backend failed (its own error)
        """
        if request.is_edit:
            raise ValidationError(
                "generate() does not take a base image; use edit()",
                field="base_image",
            )
        return await self._dispatch(request, timeout=timeout, cancel=cancel)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Edit ``request.base_image`` according to the prompt.

        Same pipeline and errors as generate(); only backends supporting
        edits are candidates.
        """
        if not request.is_edit:
            raise ValidationError("Edit requires a base image", field="base_image")
        return await self._dispatch(request, timeout=timeout, cancel=cancel)

    def status(self) -> list[dict[str, Any]]:
        """Registry diagnostics for every backend."""
        return self._registry.status()

    def recommendations(self, prompt: str) -> Recommendations:
        """Backends suited to a prompt, independent of configuration."""
        return self._engine.recommendations(prompt)

    async def aclose(self) -> None:
        """Close backend HTTP clients."""
        await self._registry.aclose()

    async def __aenter__(self) -> ImageBroker:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def validate(self, request: GenerationRequest) -> None:
        """Check prompt and dimensions against the broker's bounds.

        Raises:
            ValidationError: On the first violated bound
        """
        prompt = request.prompt.strip()
        if not prompt:
            raise ValidationError("Prompt must not be empty", field="prompt")
        limit = self._settings.max_prompt_length
        if len(request.prompt) > limit:
            raise ValidationError(
                f"Prompt exceeds {limit} characters",
                field="prompt",
                expected=f"<= {limit} characters",
                actual=len(request.prompt),
            )
        low, high = self._settings.min_dimension, self._settings.max_dimension
        for name in ("width", "height"):
            value = getattr(request, name)
            if value is not None and not low <= value <= high:
                raise ValidationError(
                    f"{name} must be between {low} and {high}",
                    field=name,
                    expected=f"{low}..{high}",
                    actual=value,
                )

    def candidates(self, request: GenerationRequest) -> list[str]:
        """Ordered backends able to serve ``request``.

        Raises:
            ConfigurationError: No configured backend supports the operation
            NoCompatibleBackend: None of them accepts the requested dimensions
        """
        operation = request.operation
        configured = self._registry.list_configured(operation)
        if not configured:
            error = ConfigurationError(f"No backend is configured for {operation}")
            raise error.with_hint("Set a backend API key, e.g. OPENAI_API_KEY")

        compatible = [
            b.name for b in configured if b.capabilities().accepts(request.width, request.height)
        ]
        if not compatible:
            raise NoCompatibleBackend(
                f"No configured backend supports {request.width}x{request.height} for {operation}",
                width=request.width,
                height=request.height,
                operation=operation,
            )

        return self._engine.candidates(
            request.prompt,
            compatible,
            request.explicit_backend,
            default_backend=self._settings.default_backend,
        )

    async def _dispatch(
        self,
        request: GenerationRequest,
        *,
        timeout: float | None,
        cancel: CancelToken | None,
    ) -> GenerationResult:
        self.validate(request)
        candidates = self.candidates(request)
        token = CancelToken(
            timeout if timeout is not None else self._settings.request_timeout,
            parent=cancel,
        )
        try:
            return await self._route(request, candidates, token)
        finally:
            token.release()

    async def _route(
        self,
        request: GenerationRequest,
        candidates: list[str],
        token: CancelToken,
    ) -> GenerationResult:
        request_id = uuid.uuid4().hex[:12]

        with log_context(request_id=request_id, operation=request.operation):
            logger.info(
                "Dispatching request",
                candidates=candidates,
                prompt=truncate_prompt(request.prompt),
            )

            def on_fallback(failed: str, target: str, error: Exception) -> None:
                logger.warning(
                    "Falling back to next backend",
                    failed=failed,
                    target=target,
                    error=str(error),
                )

            outcome = await self._fallback.execute(
                candidates,
                lambda name: self._attempt(name, request, token),
                on_fallback=on_fallback,
                cancel=token,
            )

            if outcome.success:
                result: GenerationResult = outcome.value
                notes = [
                    f"{name} failed ({error}); fell back to {outcome.target_used}"
                    for name, error in outcome.errors.items()
                ]
                explicit = request.explicit_backend
                if explicit and explicit != candidates[0]:
                    notes.insert(
                        0,
                        f"Requested backend {explicit} is not available; "
                        f"selected {outcome.target_used} automatically",
                    )
                logger.info("Request succeeded", backend=result.backend, model=result.model)
                return result.with_warnings(*notes) if notes else result

            errors = outcome.errors
            logger.error("Request failed", attempted=list(errors))
            if len(errors) == 1:
                raise next(iter(errors.values()))
            raise AllBackendsFailed(errors)

    async def _attempt(
        self,
        name: str,
        request: GenerationRequest,
        token: CancelToken,
    ) -> GenerationResult:
        """Serve ``request`` from one backend: admit, cache, call with retry, store."""
        token.raise_if_cancelled()
        backend = self._registry.get(name)
        if backend is None:
            raise ConfigurationError(f"Unknown backend: {name}", backend=name)

        await self._rate_limiter.admit(name)

        key = self._cache.key_for(request, name, width=request.width, height=request.height)
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit", backend=name, key=key.key)
            return cached

        call = backend.edit if request.is_edit else backend.generate

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.info("Retrying backend call", backend=name, attempt=attempt, delay_s=round(delay, 3))

        with log_context(backend=name):
            result = await with_retry(
                lambda: call(request, cancel=token),
                self._retry_config,
                cancel=token,
                on_retry=on_retry,
            )

        if result.total_bytes > self._settings.large_image_warning_bytes:
            megabytes = result.total_bytes / (1024 * 1024)
            result = result.with_warnings(
                f"Result is {megabytes:.1f} MB; large images may be slow to transfer"
            )

        await self._cache.put(key, result)
        return result

