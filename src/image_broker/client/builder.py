"""
Builder for fluent ImageBroker construction.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from image_broker.backends.registry import BackendRegistry
from image_broker.cache import CacheConfig, ResultCache
from image_broker.config import BrokerSettings, EnvConfigSource
from image_broker.resilience import RateLimiter, RateLimiterConfig, RetryConfig
from image_broker.routing import SelectionEngine, SelectionPolicy

if TYPE_CHECKING:
    from pathlib import Path

    from image_broker.backends.base import Backend
    from image_broker.client.core import ImageBroker
    from image_broker.config.source import ConfigSource


class ImageBrokerBuilder:
    """Builder for creating ImageBroker instances with custom configuration.

    Example:
        >>> broker = (
        ...     ImageBrokerBuilder()
        ...     .config(DictConfigSource({"OPENAI_API_KEY": "sk-..."}))
        ...     .rate_limit(5, window_seconds=60)
        ...     .cache_ttl(600)
        ...     .without_fallback()
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        """Initialize the builder."""
        self._config: ConfigSource | None = None
        self._settings: BrokerSettings | None = None
        self._registry: BackendRegistry | None = None
        self._extra_backends: list[Backend] = []
        self._policy: SelectionPolicy | None = None
        self._retry_config: RetryConfig | None = None
        self._rate_limiter_config: RateLimiterConfig | None = None
        self._cache_config: CacheConfig | None = None
        self._overrides: dict[str, object] = {}

    def config(self, source: ConfigSource) -> ImageBrokerBuilder:
        """Set the configuration source for credentials and settings.

        Returns:
            Self for chaining
        """
        self._config = source
        return self

    def settings(self, settings: BrokerSettings) -> ImageBrokerBuilder:
        """Use explicit settings instead of reading them from the source.

        Returns:
            Self for chaining
        """
        self._settings = settings
        return self

    def registry(self, registry: BackendRegistry) -> ImageBrokerBuilder:
        """Use a prepared registry instead of the built-in backends.

        Returns:
            Self for chaining
        """
        self._registry = registry
        return self

    def backend(self, backend: Backend) -> ImageBrokerBuilder:
        """Register an extra backend instance (replaces a built-in of the same name).

        Returns:
            Self for chaining
        """
        self._extra_backends.append(backend)
        return self

    def default_backend(self, name: str | None) -> ImageBrokerBuilder:
        """Backend tried first when a request does not name one.

        Returns:
            Self for chaining
        """
        self._overrides["default_backend"] = name
        return self

    def without_fallback(self) -> ImageBrokerBuilder:
        """Fail after the head candidate instead of falling back.

        Returns:
            Self for chaining
        """
        self._overrides["fallback_enabled"] = False
        return self

    def timeout(self, seconds: float | None) -> ImageBrokerBuilder:
        """Default per-request deadline.

        Returns:
            Self for chaining
        """
        self._overrides["request_timeout"] = seconds
        return self

    def policy(self, policy: SelectionPolicy) -> ImageBrokerBuilder:
        """Selection policy table.

        Returns:
            Self for chaining
        """
        self._policy = policy
        return self

    def policy_file(self, path: str | Path) -> ImageBrokerBuilder:
        """Load the selection policy table from a YAML file.

        Returns:
            Self for chaining
        """
        self._policy = SelectionPolicy.from_yaml(path)
        return self

    def retry(self, config: RetryConfig) -> ImageBrokerBuilder:
        """Retry budget for each backend call.

        Returns:
            Self for chaining
        """
        self._retry_config = config
        return self

    def rate_limit(self, max_requests: int, *, window_seconds: float = 60.0) -> ImageBrokerBuilder:
        """Per-backend sliding-window capacity.

        Returns:
            Self for chaining
        """
        self._rate_limiter_config = RateLimiterConfig(
            max_requests=max_requests,
            window_seconds=window_seconds,
        )
        return self

    def cache_ttl(self, seconds: float, *, max_entries: int | None = None) -> ImageBrokerBuilder:
        """Result cache lifetime and, optionally, capacity.

        Returns:
            Self for chaining
        """
        current = self._cache_config or CacheConfig()
        self._cache_config = CacheConfig(
            enabled=current.enabled,
            ttl_seconds=seconds,
            max_entries=max_entries if max_entries is not None else current.max_entries,
        )
        return self

    def without_cache(self) -> ImageBrokerBuilder:
        """Disable the result cache.

        Returns:
            Self for chaining
        """
        self._cache_config = CacheConfig.disabled()
        return self

    def build(self) -> ImageBroker:
        """Build the ImageBroker instance."""
        from image_broker.client.core import ImageBroker

        source = self._config or EnvConfigSource()
        settings = self._settings or BrokerSettings.from_source(source)
        if self._overrides:
            settings = replace(settings, **self._overrides)  # type: ignore[arg-type]

        registry = self._registry
        if registry is None:
            registry = BackendRegistry.default(source, http_timeout=settings.http_timeout)
        for backend in self._extra_backends:
            registry.register_instance(backend)

        policy = self._policy
        if policy is None and settings.policy_file:
            policy = SelectionPolicy.from_yaml(settings.policy_file)

        rate_config = self._rate_limiter_config or RateLimiterConfig(
            max_requests=settings.rate_limit,
            window_seconds=settings.rate_window_seconds,
        )
        cache_config = self._cache_config or CacheConfig(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )

        return ImageBroker(
            registry,
            settings=settings,
            engine=SelectionEngine(policy),
            rate_limiter=RateLimiter(rate_config),
            cache=ResultCache(cache_config),
            retry_config=self._retry_config,
        )
