"""
Integration test fixtures.

Backend adapters run against pytest-httpx mocked endpoints; nothing here
touches the network.
"""

from __future__ import annotations

import pytest

from image_broker.completion import PollConfig
from image_broker.config import DictConfigSource
from image_broker.resilience import RetryConfig

CREDENTIALS = {
    "OPENAI_API_KEY": "sk-test-openai-123456",
    "STABILITY_API_KEY": "sk-test-stability-1234",
    "REPLICATE_API_TOKEN": "r8_test_replicate_1234",
    "GEMINI_API_KEY": "gm-test-gemini-1234",
    "IDEOGRAM_API_KEY": "ideo-test-key-123456",
    "BFL_API_KEY": "bfl-test-key-123456",
    "FAL_KEY": "fal-test-key-123456",
    "RECRAFT_API_KEY": "recraft-test-key-1234",
    "CLIPDROP_API_KEY": "clipdrop-test-key-1234",
}


@pytest.fixture
def credentials() -> DictConfigSource:
    """Valid-looking credentials for every backend."""
    return DictConfigSource(CREDENTIALS)


@pytest.fixture
def fast_poll() -> PollConfig:
    """Millisecond polling for queue-based backends."""
    return PollConfig(
        initial_delay_ms=1,
        max_delay_ms=1,
        max_attempts=5,
        status_retry=RetryConfig(max_attempts=2, base_delay_ms=1, max_delay_ms=1, jitter_fraction=0),
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A minimal byte string with a PNG signature."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
