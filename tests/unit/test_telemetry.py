"""Tests for structured logging and credential masking."""

import io
import json
import logging

from image_broker.telemetry import (
    BrokerLogger,
    JsonFormatter,
    LogLevel,
    SensitiveDataMasker,
    get_log_context,
    get_logger,
    log_context,
    truncate_prompt,
)


class TestSensitiveDataMasker:
    """Tests for SensitiveDataMasker."""

    def test_masks_api_keys(self) -> None:
        """Test key shaped strings."""
        masker = SensitiveDataMasker()
        secret = "sk-" + "a" * 32
        masked = masker.mask(f"using key {secret}")
        assert secret not in masked
        assert "sk-***REDACTED***" in masked

    def test_masks_auth_headers(self) -> None:
        """Test header style credentials."""
        masker = SensitiveDataMasker()
        assert "tok123456" not in masker.mask("Authorization: Bearer tok123456")
        assert "abcdef123456" not in masker.mask("X-Key: abcdef123456")

    def test_masks_query_key(self) -> None:
        """Test query string keys."""
        masker = SensitiveDataMasker()
        url = "https://example.test/v1beta/models/m:generateContent?key=AIzaSecretValue"
        assert "AIzaSecretValue" not in masker.mask(url)

    def test_masks_env_assignments(self) -> None:
        """Test credential variable assignments."""
        masker = SensitiveDataMasker()
        assert "r8_secretvalue" not in masker.mask("REPLICATE_API_TOKEN=r8_secretvalue")

    def test_mask_dict(self) -> None:
        """Test structured fields."""
        masker = SensitiveDataMasker()
        masked = masker.mask_dict(
            {
                "api_key": "anything",
                "prompt": "a red fox",
                "nested": {"token": "t", "backend": "openai"},
                "items": [{"secret": "s"}, "plain"],
            }
        )
        assert masked["api_key"] == "***REDACTED***"
        assert masked["prompt"] == "a red fox"
        assert masked["nested"] == {"token": "***REDACTED***", "backend": "openai"}
        assert masked["items"] == [{"secret": "***REDACTED***"}, "plain"]


class TestLogContext:
    """Tests for request-scoped context."""

    def test_nested_context(self) -> None:
        """Test that nested blocks merge and restore fields."""
        assert get_log_context().request_id is None
        with log_context(request_id="req-1", operation="generate"):
            with log_context(backend="openai", attempt=2):
                context = get_log_context()
                assert context.request_id == "req-1"
                assert context.backend == "openai"
                assert context.extra == {"attempt": 2}
            assert get_log_context().backend is None
        assert get_log_context().to_dict() == {}

    def test_none_fields_skipped(self) -> None:
        """Test that None values are not recorded."""
        with log_context(request_id="req-2", backend=None):
            assert get_log_context().to_dict() == {"request_id": "req-2"}


class TestFormatting:
    """Tests for formatters and logger configuration."""

    def test_truncate_prompt(self) -> None:
        """Test prompt shortening."""
        assert truncate_prompt("a   red\nfox") == "a red fox"
        long = "x" * 60
        assert truncate_prompt(long) == "x" * 50 + "..."

    def test_log_level_parse(self) -> None:
        """Test level names."""
        assert LogLevel.parse("warn") == LogLevel.WARNING
        assert LogLevel.parse("Debug").to_logging_level() == logging.DEBUG

    def test_json_formatter_masks(self) -> None:
        """Test JSON output masking of message and fields."""
        record = logging.LogRecord(
            "image_broker.test", logging.INFO, __file__, 1, "sending Bearer secrettoken123", None, None
        )
        record.extra_fields = {"api_key": "k", "backend": "openai"}
        with log_context(request_id="req-3"):
            output = json.loads(JsonFormatter().format(record))
        assert "secrettoken123" not in output["message"]
        assert output["api_key"] == "***REDACTED***"
        assert output["backend"] == "openai"
        assert output["context"] == {"request_id": "req-3"}
        assert output["level"] == "INFO"

    def test_configure_stream(self) -> None:
        """Test configuring the shared handler."""
        stream = io.StringIO()
        try:
            BrokerLogger.configure(level="debug", format="json", stream=stream)
            logger = get_logger("image_broker.tests.telemetry")
            logger.debug("Polled async job", backend="bfl", attempt=1)
            line = json.loads(stream.getvalue().strip().splitlines()[-1])
            assert line["message"] == "Polled async job"
            assert line["backend"] == "bfl"
            assert line["attempt"] == 1
        finally:
            BrokerLogger.configure()
