"""错误分类模块：将 HTTP 状态码和响应体映射到标准错误类别。

Error classification for backend HTTP failures.

Maps status codes (and, for throttling responses, body hints) onto a small
set of standard error classes, and decides which of them are transient.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorClass(str, Enum):
    """Standard error classification for backend failures."""

    INVALID_REQUEST = "invalid_request"
    """Malformed request body, invalid parameters, or unsupported operation."""

    AUTHENTICATION = "authentication"
    """Missing/invalid credentials (API key/token)."""

    PERMISSION_DENIED = "permission_denied"
    """Caller is authenticated but not permitted (includes content moderation)."""

    NOT_FOUND = "not_found"
    """Requested resource (model, job) not found."""

    QUOTA_EXHAUSTED = "quota_exhausted"
    """Account quota/billing/credit limit exceeded."""

    RATE_LIMITED = "rate_limited"
    """Throttled by the service; retryable with backoff."""

    REQUEST_TOO_LARGE = "request_too_large"
    """Payload too large (e.g., oversized input image)."""

    TIMEOUT = "timeout"
    """Request timed out or deadline exceeded."""

    CONFLICT = "conflict"
    """Request conflict."""

    SERVER_ERROR = "server_error"
    """Transient server-side failure (5xx)."""

    OVERLOADED = "overloaded"
    """Service overloaded / temporarily unavailable."""

    NETWORK = "network"
    """Connection could not be established or was dropped."""

    OTHER = "other"
    """Unknown or backend-specific classification."""


_RETRYABLE_CLASSES: frozenset[ErrorClass] = frozenset(
    {
        ErrorClass.RATE_LIMITED,
        ErrorClass.TIMEOUT,
        ErrorClass.CONFLICT,
        ErrorClass.SERVER_ERROR,
        ErrorClass.OVERLOADED,
        ErrorClass.NETWORK,
    }
)

_DEFAULT_STATUS_MAPPING: dict[int, ErrorClass] = {
    400: ErrorClass.INVALID_REQUEST,
    401: ErrorClass.AUTHENTICATION,
    402: ErrorClass.QUOTA_EXHAUSTED,
    403: ErrorClass.PERMISSION_DENIED,
    404: ErrorClass.NOT_FOUND,
    408: ErrorClass.TIMEOUT,
    409: ErrorClass.CONFLICT,
    413: ErrorClass.REQUEST_TOO_LARGE,
    422: ErrorClass.INVALID_REQUEST,
    429: ErrorClass.RATE_LIMITED,
    500: ErrorClass.SERVER_ERROR,
    502: ErrorClass.SERVER_ERROR,
    503: ErrorClass.OVERLOADED,
    504: ErrorClass.TIMEOUT,
    529: ErrorClass.OVERLOADED,
}

# Avoid "limit exceeded": too broad, plain throttling uses it as well
_QUOTA_PATTERNS = ("quota", "billing", "credit", "insufficient", "payment")


def classify_http_error(
    status_code: int,
    body: dict[str, Any] | None = None,
) -> ErrorClass:
    """Classify an HTTP error into a standard error class.

    Args:
        status_code: HTTP status code
        body: Response body (parsed JSON)

    Returns:
        ErrorClass representing the error type
    """
    # A 429 may be plain throttling or an exhausted account
    if status_code == 429 and body:
        error_msg = (extract_error_message(body) or "").lower()
        error_obj = body.get("error")
        error_type = ""
        if isinstance(error_obj, dict):
            error_type = str(error_obj.get("type") or error_obj.get("code") or "").lower()

        for pattern in _QUOTA_PATTERNS:
            if pattern in error_msg or pattern in error_type:
                return ErrorClass.QUOTA_EXHAUSTED

    if status_code in _DEFAULT_STATUS_MAPPING:
        return _DEFAULT_STATUS_MAPPING[status_code]

    if 400 <= status_code < 500:
        return ErrorClass.INVALID_REQUEST
    if 500 <= status_code < 600:
        return ErrorClass.SERVER_ERROR

    return ErrorClass.OTHER


def is_retryable(error_class: ErrorClass) -> bool:
    """Check if an error class is transient.

    Args:
        error_class: The error class to check

    Returns:
        True if the error is typically retryable
    """
    return error_class in _RETRYABLE_CLASSES


def extract_error_message(body: dict[str, Any] | None) -> str | None:
    """Extract error message from response body.

    Supports the envelope formats used by the image services:
    - OpenAI / Gemini style: {"error": {"message": "..."}}
    - Stability style: {"name": "...", "errors": ["..."]}
    - Simple: {"message": "..."} or {"error": "..."}
    - Detail: {"detail": "..."} or {"detail": [{...}]}

    Args:
        body: Response body (parsed JSON)

    Returns:
        Error message if found, None otherwise
    """
    if not body:
        return None

    if "error" in body:
        error = body["error"]
        if isinstance(error, dict):
            msg = error.get("message")
            if isinstance(msg, str):
                return msg
        elif isinstance(error, str):
            return error

    if "message" in body:
        msg = body["message"]
        if isinstance(msg, str):
            return msg

    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(str(e) for e in errors)

    if "detail" in body:
        detail = body["detail"]
        if isinstance(detail, str):
            return detail
        if isinstance(detail, list) and detail:
            first = detail[0]
            if isinstance(first, dict) and isinstance(first.get("msg"), str):
                return first["msg"]
            return str(first)

    return None
