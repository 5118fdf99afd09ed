"""
Broker settings.

BrokerSettings gathers the tunables of the broker in one dataclass. It is
built explicitly (or from a ConfigSource) at process start and handed to the
builder; the components themselves never read configuration.

Recognized keys:
- IMAGE_BROKER_DEFAULT_BACKEND (alias: DEFAULT_PROVIDER)
- IMAGE_BROKER_DISABLE_FALLBACK (alias: DISABLE_FALLBACK)
- IMAGE_BROKER_MAX_PROMPT_LENGTH, IMAGE_BROKER_MIN_DIMENSION, IMAGE_BROKER_MAX_DIMENSION
- IMAGE_BROKER_TIMEOUT, IMAGE_BROKER_HTTP_TIMEOUT
- IMAGE_BROKER_RATE_LIMIT, IMAGE_BROKER_RATE_WINDOW
- IMAGE_BROKER_CACHE_TTL, IMAGE_BROKER_CACHE_SIZE
- IMAGE_BROKER_POLICY_FILE
- IMAGE_BROKER_LOG_LEVEL, IMAGE_BROKER_LOG_FORMAT
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from image_broker.errors import ValidationError

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValidationError(f"Invalid boolean for {key}: {value!r}", field=key)


def _parse_number(key: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid number for {key}: {value!r}", field=key) from e


@dataclass
class BrokerSettings:
    """Broker tunables.

    Attributes:
        default_backend: Backend tried first when a prompt matches no category (None = static chain)
        fallback_enabled: Whether retryable failures move on to the next candidate
        max_prompt_length: Maximum prompt length in characters
        min_dimension: Smallest accepted width/height
        max_dimension: Largest accepted width/height
        request_timeout: Default per-request deadline in seconds (None = no deadline)
        http_timeout: Per-HTTP-call timeout in seconds
        rate_limit: Admissions per backend per window
        rate_window_seconds: Sliding window length
        cache_ttl_seconds: Result cache entry lifetime
        cache_max_entries: Result cache capacity
        large_image_warning_bytes: Results above this size carry a warning
        policy_file: Optional YAML selection policy path
        log_level: Log level name
        log_format: 'text' or 'json'
    """

    default_backend: str | None = None
    fallback_enabled: bool = True
    max_prompt_length: int = 4000
    min_dimension: int = 64
    max_dimension: int = 4096
    request_timeout: float | None = 300.0
    http_timeout: float = 120.0
    rate_limit: int = 10
    rate_window_seconds: float = 60.0
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 100
    large_image_warning_bytes: int = 5 * 1024 * 1024
    policy_file: str | None = None
    log_level: str = "INFO"
    log_format: str = "text"

    def __post_init__(self) -> None:
        if self.min_dimension < 1 or self.min_dimension > self.max_dimension:
            raise ValidationError(
                "min_dimension must be between 1 and max_dimension",
                field="min_dimension",
                actual=self.min_dimension,
            )
        if self.max_prompt_length < 1:
            raise ValidationError("max_prompt_length must be positive", field="max_prompt_length")
        if self.default_backend is not None:
            name = self.default_backend.strip().lower()
            self.default_backend = None if name in ("", "auto") else name

    @classmethod
    def from_source(cls, source: ConfigSource) -> BrokerSettings:
        """Read settings from a configuration source.

        Unset keys keep their defaults.

        Raises:
            ValidationError: If a value cannot be parsed
        """
        settings = cls()

        def read(*keys: str) -> tuple[str, str] | None:
            for key in keys:
                value = source.get(key)
                if value is not None and value.strip():
                    return key, value
            return None

        if found := read("IMAGE_BROKER_DEFAULT_BACKEND", "DEFAULT_PROVIDER"):
            settings.default_backend = found[1]
        if found := read("IMAGE_BROKER_DISABLE_FALLBACK", "DISABLE_FALLBACK"):
            settings.fallback_enabled = not _parse_bool(*found)

        int_fields = {
            "IMAGE_BROKER_MAX_PROMPT_LENGTH": "max_prompt_length",
            "IMAGE_BROKER_MIN_DIMENSION": "min_dimension",
            "IMAGE_BROKER_MAX_DIMENSION": "max_dimension",
            "IMAGE_BROKER_RATE_LIMIT": "rate_limit",
            "IMAGE_BROKER_CACHE_SIZE": "cache_max_entries",
        }
        for key, attr in int_fields.items():
            if found := read(key):
                setattr(settings, attr, _parse_number(*found, int))

        float_fields = {
            "IMAGE_BROKER_TIMEOUT": "request_timeout",
            "IMAGE_BROKER_HTTP_TIMEOUT": "http_timeout",
            "IMAGE_BROKER_RATE_WINDOW": "rate_window_seconds",
            "IMAGE_BROKER_CACHE_TTL": "cache_ttl_seconds",
        }
        for key, attr in float_fields.items():
            if found := read(key):
                setattr(settings, attr, _parse_number(*found, float))

        if found := read("IMAGE_BROKER_POLICY_FILE"):
            settings.policy_file = found[1]
        if found := read("IMAGE_BROKER_LOG_LEVEL"):
            settings.log_level = found[1].upper()
        if found := read("IMAGE_BROKER_LOG_FORMAT"):
            settings.log_format = found[1].lower()

        # Re-run bound checks and backend normalization
        settings.__post_init__()
        return settings
