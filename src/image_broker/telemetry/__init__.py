"""
Telemetry module for image-broker-python.

Provides structured logging with request-scoped context and credential masking.
"""

from image_broker.telemetry.logger import (
    BrokerLogger,
    JsonFormatter,
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    log_context,
    set_log_context,
    truncate_prompt,
)

__all__ = [
    "BrokerLogger",
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_context",
    "set_log_context",
    "truncate_prompt",
]
