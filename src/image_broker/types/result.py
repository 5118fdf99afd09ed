"""
Generation result model.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from image_broker.types.image import GeneratedImage


class GenerationResult(BaseModel):
    """Images produced by one successful backend call.

    Immutable; annotate with ``with_warnings`` which returns a copy.
    """

    model_config = ConfigDict(frozen=True)

    images: tuple[GeneratedImage, ...] = Field(min_length=1, description="Output images, in order")
    backend: str = Field(description="Backend that produced the images")
    model: str = Field(description="Model identifier used")
    warnings: tuple[str, ...] = Field(default=(), description="Non-fatal notes")

    @property
    def first(self) -> GeneratedImage:
        return self.images[0]

    @property
    def total_bytes(self) -> int:
        return sum(image.size_bytes for image in self.images)

    def with_warnings(self, *warnings: str) -> GenerationResult:
        """Copy with extra warnings appended (duplicates skipped)."""
        merged = list(self.warnings)
        for warning in warnings:
            if warning and warning not in merged:
                merged.append(warning)
        return self.model_copy(update={"warnings": tuple(merged)})

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: ``{images: [{data, format}], backend, model, warnings?}``."""
        payload: dict[str, Any] = {
            "images": [image.to_dict() for image in self.images],
            "backend": self.backend,
            "model": self.model,
        }
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload
