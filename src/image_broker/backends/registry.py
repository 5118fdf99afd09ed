"""后端注册表：按名称延迟构造并缓存后端实例。

Backend registry.

Holds one factory per backend name, constructs each backend lazily on first
use and memoizes it for the registry's lifetime. The registry is an explicit
value handed to the broker; there is no module-level instance.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from image_broker.telemetry.logger import get_logger

if TYPE_CHECKING:
    from image_broker.backends.base import Backend
    from image_broker.config.source import ConfigSource

logger = get_logger(__name__)


class BackendFactory(Protocol):
    """Builds a backend from a configuration source."""

    def __call__(self, config: ConfigSource, *, timeout: float) -> Backend: ...


class BackendRegistry:
    """Lazily constructed, memoized backends keyed by name.

    Names are case-insensitive. Construction happens at most once per name;
    instance identity is stable afterwards.

    Example:
        >>> registry = BackendRegistry.default(EnvConfigSource())
        >>> [b.name for b in registry.list_configured()]
        ['mock', 'openai']
        >>> registry.get("OpenAI") is registry.get("openai")
        True
    """

    def __init__(self, config: ConfigSource, *, http_timeout: float = 120.0) -> None:
        """Initialize an empty registry.

        Args:
            config: Source each backend reads its credentials from
            http_timeout: Per-call HTTP timeout handed to backends
        """
        self._config = config
        self._http_timeout = http_timeout
        self._factories: dict[str, BackendFactory] = {}
        self._instances: dict[str, Backend] = {}

    @classmethod
    def default(cls, config: ConfigSource, *, http_timeout: float = 120.0) -> BackendRegistry:
        """Registry with every built-in backend registered."""
        from image_broker.backends import BUILTIN_BACKENDS

        registry = cls(config, http_timeout=http_timeout)
        for name, factory in BUILTIN_BACKENDS.items():
            registry.register(name, factory)
        return registry

    @property
    def config(self) -> ConfigSource:
        return self._config

    def register(self, name: str, factory: BackendFactory) -> BackendRegistry:
        """Register (or replace) a backend factory.

        Returns:
            Self for chaining
        """
        key = name.lower()
        self._factories[key] = factory
        self._instances.pop(key, None)
        return self

    def register_instance(self, backend: Backend) -> BackendRegistry:
        """Register an already constructed backend under its own name.

        Returns:
            Self for chaining
        """
        key = backend.name.lower()

        def factory(config: ConfigSource, *, timeout: float) -> Backend:
            return backend

        self._factories[key] = factory
        self._instances[key] = backend
        return self

    def names(self) -> list[str]:
        """All registered backend names, in registration order."""
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._factories

    def __len__(self) -> int:
        return len(self._factories)

    def get(self, name: str) -> Backend | None:
        """Backend instance for ``name``, or None for unknown names."""
        key = name.lower()
        instance = self._instances.get(key)
        if instance is not None:
            return instance
        factory = self._factories.get(key)
        if factory is None:
            return None
        instance = factory(self._config, timeout=self._http_timeout)
        self._instances[key] = instance
        logger.debug("Constructed backend", backend=key)
        return instance

    def list_configured(self, operation: str | None = None) -> list[Backend]:
        """Configured backends, optionally limited to those supporting ``operation``."""
        configured = []
        for name in self._factories:
            backend = self.get(name)
            if backend is None or not backend.is_configured():
                continue
            if operation is not None and not backend.capabilities().supports(operation):
                continue
            configured.append(backend)
        return configured

    def status(self) -> list[dict[str, Any]]:
        """Diagnostics for every registered backend."""
        report = []
        for name in self._factories:
            backend = self.get(name)
            if backend is None:
                continue
            report.append(
                {
                    "name": name,
                    "configured": backend.is_configured(),
                    "requiredCredentials": backend.required_credentials(),
                    "capabilities": backend.capabilities().to_dict(),
                }
            )
        return report

    async def aclose(self) -> None:
        """Close every constructed backend."""
        for instance in list(self._instances.values()):
            await instance.aclose()
