"""
Generation and edit request model.

A GenerationRequest is immutable once created. Schema-level bounds (64..4096
pixels, guidance 0..30, steps 1..150) are enforced by pydantic; prompt
emptiness/length and the broker's configured dimension range are checked by
the orchestrator so they surface as the broker's ValidationError.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from image_broker.errors import ValidationError
from image_broker.types.image import ImageData

AUTO_BACKEND = "auto"

# Protocol-boundary argument names (camelCase) to field names
_ARGUMENT_ALIASES: dict[str, str] = {
    "backendName": "backend",
    "provider": "backend",
    "baseImage": "base_image",
    "image": "base_image",
    "maskImage": "mask_image",
    "mask": "mask_image",
}


class GenerationRequest(BaseModel):
    """A request to generate (or, with a base image, edit) an image.

    Example:
        >>> req = GenerationRequest(prompt="a red fox in snow", width=1024, height=1024)
        >>> req.is_auto
        True
    """

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(description="Text prompt")
    backend: str | None = Field(default=None, description="Backend name, or None/'auto'")
    width: int | None = Field(default=None, ge=64, le=4096, description="Output width in pixels")
    height: int | None = Field(default=None, ge=64, le=4096, description="Output height in pixels")
    model: str | None = Field(default=None, description="Backend-specific model id")
    seed: int | None = Field(default=None, ge=0, description="Random seed")
    guidance: float | None = Field(default=None, ge=0, le=30, description="Guidance scale")
    steps: int | None = Field(default=None, ge=1, le=150, description="Inference steps")
    base_image: ImageData | None = Field(default=None, description="Image to edit")
    mask_image: ImageData | None = Field(default=None, description="Optional edit mask")

    @property
    def is_edit(self) -> bool:
        return self.base_image is not None

    @property
    def is_auto(self) -> bool:
        return self.backend is None or self.backend.strip().lower() in ("", AUTO_BACKEND)

    @property
    def operation(self) -> str:
        return "edit" if self.is_edit else "generate"

    @property
    def explicit_backend(self) -> str | None:
        """Normalized backend name, or None in auto mode."""
        if self.is_auto:
            return None
        return self.backend.strip().lower()  # type: ignore[union-attr]

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> GenerationRequest:
        """Build a request from protocol-boundary arguments.

        Accepts camelCase or snake_case keys. Image arguments may be data URLs,
        filesystem paths or ``file://`` URLs.

        Raises:
            ValidationError: If any argument is missing or out of bounds
        """
        fields: dict[str, Any] = {}
        for key, value in arguments.items():
            if value is None:
                continue
            fields[_ARGUMENT_ALIASES.get(key, key)] = value

        if "prompt" not in fields or not isinstance(fields["prompt"], str):
            raise ValidationError("prompt is required", field="prompt")

        for image_field in ("base_image", "mask_image"):
            if image_field in fields:
                fields[image_field] = ImageData.from_reference(fields[image_field])

        known = set(cls.model_fields)
        unknown = sorted(set(fields) - known)
        if unknown:
            raise ValidationError(f"Unknown arguments: {', '.join(unknown)}", field=unknown[0])

        try:
            return cls(**fields)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise ValidationError(
                f"Invalid {loc or 'request'}: {first.get('msg', 'invalid value')}",
                field=loc or None,
                actual=first.get("input"),
            ) from e
