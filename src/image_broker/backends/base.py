"""
Backend contract.

A backend is any object with a name, a configuration check, a capability
descriptor and the two operations. Adapters are independent classes that
satisfy the Backend protocol; they share helpers, not a base class.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from image_broker.config.source import is_valid_credential
from image_broker.errors import BackendError, ErrorClass, ValidationError

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.image import ImageData
    from image_broker.types.request import GenerationRequest
    from image_broker.types.result import GenerationResult


@dataclass(frozen=True)
class BackendCapabilities:
    """What a backend can do.

    Attributes:
        supports_generate: Text-to-image supported
        supports_edit: Image editing supported
        max_width: Largest output width
        max_height: Largest output height
        supported_models: Model identifiers accepted by the backend
        default_model: Model used when a request does not name one
    """

    supports_generate: bool = True
    supports_edit: bool = False
    max_width: int = 1024
    max_height: int = 1024
    supported_models: tuple[str, ...] = field(default_factory=tuple)
    default_model: str | None = None

    def accepts(self, width: int | None, height: int | None) -> bool:
        """Whether the requested dimensions are within this backend's limits."""
        return (width is None or width <= self.max_width) and (
            height is None or height <= self.max_height
        )

    def supports(self, operation: str) -> bool:
        if operation == "edit":
            return self.supports_edit
        return self.supports_generate

    def to_dict(self) -> dict[str, Any]:
        return {
            "supportsGenerate": self.supports_generate,
            "supportsEdit": self.supports_edit,
            "maxWidth": self.max_width,
            "maxHeight": self.max_height,
            "supportedModels": list(self.supported_models),
        }


@runtime_checkable
class Backend(Protocol):
    """Uniform contract implemented by every image service adapter."""

    name: str

    def is_configured(self) -> bool:
        """Whether credentials are present and look valid."""
        ...

    def required_credentials(self) -> list[str]:
        """Configuration keys this backend needs."""
        ...

    def capabilities(self) -> BackendCapabilities:
        ...

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Generate images from a text prompt."""
        ...

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        """Edit ``request.base_image`` according to the prompt."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


def read_credential(source: ConfigSource, *keys: str) -> str | None:
    """First valid credential among ``keys``."""
    for key in keys:
        value = source.get(key)
        if is_valid_credential(value):
            return value.strip()  # type: ignore[union-attr]
    return None


def edit_not_supported(backend: str) -> BackendError:
    """Permanent error for backends without an edit endpoint."""
    return BackendError(
        f"{backend} does not support image editing",
        backend=backend,
        retryable=False,
        error_class=ErrorClass.INVALID_REQUEST,
    )


def require_base_image(request: GenerationRequest) -> ImageData:
    """The request's base image; edits without one are rejected."""
    if request.base_image is None:
        raise ValidationError("Edit requires a base image", field="base_image")
    return request.base_image


def missing_credentials(backend: str, keys: list[str]) -> BackendError:
    return BackendError(
        f"{backend} is not configured (set {' or '.join(keys)})",
        backend=backend,
        retryable=False,
        error_class=ErrorClass.AUTHENTICATION,
    )


def malformed_response(backend: str, detail: str, raw: Any = None) -> BackendError:
    """Permanent error for a 2xx response without usable image data."""
    return BackendError(
        f"{backend}: {detail}",
        backend=backend,
        retryable=False,
        error_class=ErrorClass.OTHER,
        raw_error=raw,
    )


def pick_model(request: GenerationRequest, caps: BackendCapabilities) -> str:
    """Requested model, or the backend default."""
    return request.model or caps.default_model or (caps.supported_models[0] if caps.supported_models else "default")


def aspect_ratio(width: int, height: int, choices: tuple[str, ...]) -> str:
    """Closest supported ``W:H`` aspect ratio string."""
    target = width / height

    def distance(choice: str) -> float:
        w, h = choice.split(":")
        return abs(int(w) / int(h) - target)

    return min(choices, key=distance)
