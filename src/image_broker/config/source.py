"""
Configuration sources.

Backends discover their credentials through a ConfigSource; the broker core
never reads the environment itself.

Resolution order for EnvConfigSource:
1. Environment variables
2. System keyring (optional, ``pip install image-broker-python[keyring]``)
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from image_broker._features import HAS_KEYRING
from image_broker.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = get_logger(__name__)

KEYRING_SERVICES = ("image-broker", "image-mcp")
"""Keyring service names tried in order."""

_PLACEHOLDER_VALUES = frozenset({"your-api-key-here", "placeholder", "changeme", "xxx"})
MIN_CREDENTIAL_LENGTH = 10


@runtime_checkable
class ConfigSource(Protocol):
    """Read-only key/value configuration."""

    def get(self, key: str) -> str | None:
        """Return the value for ``key``, or None when absent."""
        ...


def is_valid_credential(value: str | None) -> bool:
    """Check that a credential looks real.

    Rejects missing values, placeholders such as ``your-api-key-here``, and
    values shorter than 10 characters.
    """
    if not value:
        return False
    stripped = value.strip()
    if stripped.lower() in _PLACEHOLDER_VALUES:
        return False
    return len(stripped) >= MIN_CREDENTIAL_LENGTH


class EnvConfigSource:
    """Environment variables, falling back to the system keyring.

    Args:
        environ: Mapping to read instead of ``os.environ``
        use_keyring: Whether to consult the system keyring for missing keys
    """

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        *,
        use_keyring: bool = True,
    ) -> None:
        self._environ = environ if environ is not None else os.environ
        self._use_keyring = use_keyring and HAS_KEYRING

    def get(self, key: str) -> str | None:
        value = self._environ.get(key)
        if value:
            return value
        if self._use_keyring:
            return _try_keyring(key)
        return None


class DictConfigSource:
    """In-memory configuration, mainly for tests and embedding."""

    def __init__(self, values: Mapping[str, str | None] | None = None) -> None:
        self._values = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key) or None

    def set(self, key: str, value: str | None) -> None:
        self._values[key] = value


class ChainedConfigSource:
    """First non-empty value across several sources."""

    def __init__(self, sources: Iterable[ConfigSource]) -> None:
        self._sources = list(sources)

    def get(self, key: str) -> str | None:
        for source in self._sources:
            value = source.get(key)
            if value:
                return value
        return None


def _try_keyring(key: str) -> str | None:
    """Try to get a credential from the system keyring.

    Args:
        key: Configuration key, used as the keyring user name

    Returns:
        Value from keyring or None
    """
    try:
        import keyring
    except ImportError:
        # keyring not installed
        return None

    for service in KEYRING_SERVICES:
        try:
            value = keyring.get_password(service, key)
        except Exception as e:
            # No usable backend (common in containers, WSL, CI)
            logger.debug("Keyring lookup failed", service=service, error=str(e))
            return None
        if value:
            return value
    return None
