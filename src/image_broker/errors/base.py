"""错误基类：提供分层错误体系和结构化错误上下文。

Base error classes for image-broker-python.

Provides a layered error hierarchy:
- BrokerError: Base class for all broker errors
- ValidationError: Bad request shape or bounds (permanent)
- ConfigurationError: No usable backend configured (permanent)
- RateLimitExceeded: Local admission control rejected the call (transient)
- BackendError: Failure reported by a backend service (classified)
- TimeoutError: Deadline elapsed mid-call or mid-poll (transient)
- RetriesExhausted: Retry budget spent, wraps the last error
- NoCompatibleBackend: No configured backend satisfies the request (permanent)
- AllBackendsFailed: Every candidate backend failed (aggregated)
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Mapping

    from image_broker.errors.classification import ErrorClass


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    source: str | None = None
    """Error source (e.g., 'validation', 'backend', 'rate_limit')"""

    backend: str | None = None
    """Backend the error relates to, if any"""

    field_path: str | None = None
    """Path to the problematic request field (e.g., 'width')"""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.backend:
            parts.append(f"backend={self.backend}")
        if self.field_path:
            parts.append(f"at '{self.field_path}'")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class BrokerError(Exception):
    """Base class for all image-broker errors.

    Every error carries a stable ``kind`` string and a ``retryable`` flag so
    callers (and the protocol boundary) can decide what to do without
    inspecting the concrete class.

    Attributes:
        message: Human-readable error message
        context: Structured error context
    """

    kind: ClassVar[str] = "broker_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> BrokerError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self

    def to_dict(self) -> dict[str, Any]:
        """Structured error payload for the protocol boundary."""
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(BrokerError):
    """Validation error for requests.

    Raised when:
    - The prompt is empty or too long
    - Dimensions are outside the allowed range
    - An image reference cannot be decoded
    - An edit request has no base image
    """

    kind = "validation_error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        field: str | None = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        ctx = context or ErrorContext(source="validation")
        if field:
            ctx.field_path = field
        if expected is not None:
            ctx.details["expected"] = expected
        if actual is not None:
            ctx.details["actual"] = actual
        super().__init__(message, ctx)
        self.field = field
        self.expected = expected
        self.actual = actual


class ConfigurationError(BrokerError):
    """No usable backend is configured, or a named backend is unusable."""

    kind = "configuration_error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        backend: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="configuration", backend=backend)
        super().__init__(message, ctx)
        self.backend = backend


class RateLimitExceeded(BrokerError):
    """Local sliding-window admission rejected a call.

    Not retried against the same backend by the broker, but a later call
    after the window slides will succeed, so the orchestrator may move on
    to the next candidate.
    """

    kind = "rate_limit_exceeded"
    retryable = True

    def __init__(
        self,
        backend: str,
        *,
        limit: int,
        window_seconds: float,
        retry_after: float | None = None,
    ) -> None:
        ctx = ErrorContext(source="rate_limit", backend=backend)
        ctx.details["limit"] = limit
        ctx.details["window_seconds"] = window_seconds
        if retry_after is not None:
            ctx.details["retry_after"] = round(retry_after, 3)
        super().__init__(
            f"Rate limit exceeded for {backend}: {limit} requests per {window_seconds:g}s",
            ctx,
        )
        self.backend = backend
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after


class BackendError(BrokerError):
    """Error reported by (or while talking to) a backend service.

    Attributes:
        backend: Backend name
        status_code: HTTP status code, when the failure came from a response
        error_class: Standardized error classification
        retryable: Whether the failure is transient
        retry_after: Suggested retry delay in seconds (from header)
        raw_error: Raw error payload from the service
    """

    kind = "backend_error"

    def __init__(
        self,
        message: str,
        *,
        backend: str,
        retryable: bool = False,
        status_code: int | None = None,
        error_class: ErrorClass | None = None,
        retry_after: float | None = None,
        raw_error: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="backend", backend=backend)
        if status_code is not None:
            ctx.details["status_code"] = status_code
        if error_class is not None:
            ctx.details["error_class"] = error_class.value
        ctx.details["retryable"] = retryable
        super().__init__(message, ctx)

        self.backend = backend
        self.retryable = retryable
        self.status_code = status_code
        self.error_class = error_class
        self.retry_after = retry_after
        self.raw_error = raw_error
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def from_response(
        cls,
        backend: str,
        status_code: int,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> BackendError:
        """Create a classified BackendError from an HTTP error response.

        Args:
            backend: Backend name
            status_code: HTTP status code
            body: Response body (parsed JSON, or text)
            headers: Response headers

        Returns:
            BackendError with retryability derived from the classification
        """
        from image_broker.errors.classification import (
            classify_http_error,
            extract_error_message,
            is_retryable,
        )

        json_body = body if isinstance(body, dict) else None
        error_class = classify_http_error(status_code, json_body)
        message = extract_error_message(json_body)
        if not message and isinstance(body, str) and body.strip():
            message = body.strip()[:200]
        message = f"{backend} API error ({status_code}): {message or 'no details'}"

        retry_after = None
        if headers:
            retry_after_str = headers.get("retry-after") or headers.get("Retry-After")
            if retry_after_str:
                with contextlib.suppress(ValueError):
                    retry_after = float(retry_after_str)

        return cls(
            message,
            backend=backend,
            retryable=is_retryable(error_class),
            status_code=status_code,
            error_class=error_class,
            retry_after=retry_after,
            raw_error=body,
        )


class TimeoutError(BrokerError):
    """A deadline elapsed mid-call or mid-poll.

    Shadows the builtin inside this module; exported as ``BrokerTimeoutError``.
    """

    kind = "timeout"
    retryable = True

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        backend: str | None = None,
        elapsed: float | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="timeout", backend=backend)
        if elapsed is not None:
            ctx.details["elapsed_seconds"] = round(elapsed, 3)
        super().__init__(message, ctx)
        self.backend = backend
        self.elapsed = elapsed


class RetriesExhausted(BrokerError):
    """The retry budget was spent; wraps the last underlying error."""

    kind = "retries_exhausted"

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        ctx = ErrorContext(source="retry", backend=getattr(last_error, "backend", None))
        ctx.details["attempts"] = attempts
        super().__init__(f"Gave up after {attempts} attempts: {last_error}", ctx)
        self.last_error = last_error
        self.attempts = attempts
        self.retryable = bool(getattr(last_error, "retryable", False))
        self.__cause__ = last_error


class NoCompatibleBackend(BrokerError):
    """No configured backend satisfies the requested dimensions or operation."""

    kind = "no_compatible_backend"

    def __init__(
        self,
        message: str,
        *,
        width: int | None = None,
        height: int | None = None,
        operation: str = "generate",
    ) -> None:
        ctx = ErrorContext(source="selection")
        ctx.details["operation"] = operation
        if width is not None:
            ctx.details["width"] = width
        if height is not None:
            ctx.details["height"] = height
        super().__init__(message, ctx)
        self.width = width
        self.height = height
        self.operation = operation


class AllBackendsFailed(BrokerError):
    """Every candidate backend was tried and none succeeded.

    Attributes:
        failures: Ordered mapping of backend name to its terminal error
    """

    kind = "all_backends_failed"

    def __init__(self, failures: dict[str, BaseException]) -> None:
        self.failures = dict(failures)
        reasons = "; ".join(f"{name}: {err}" for name, err in self.failures.items())
        ctx = ErrorContext(source="orchestrator")
        ctx.details["attempted"] = list(self.failures)
        super().__init__(
            f"All {len(self.failures)} candidate backends failed ({reasons})",
            ctx,
        )
        self.retryable = bool(self.failures) and all(
            getattr(err, "retryable", False) for err in self.failures.values()
        )

    @property
    def attempted(self) -> list[str]:
        """Backends attempted, in order."""
        return list(self.failures)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["attempts"] = [
            {
                "backend": name,
                "kind": getattr(err, "kind", type(err).__name__),
                "message": getattr(err, "message", str(err)),
            }
            for name, err in self.failures.items()
        ]
        return payload
