"""
Configuration for image-broker-python: credential sources and broker settings.
"""

from image_broker.config.settings import BrokerSettings
from image_broker.config.source import (
    ChainedConfigSource,
    ConfigSource,
    DictConfigSource,
    EnvConfigSource,
    is_valid_credential,
)

__all__ = [
    "BrokerSettings",
    "ChainedConfigSource",
    "ConfigSource",
    "DictConfigSource",
    "EnvConfigSource",
    "is_valid_credential",
]
