"""
Request, result and image payload types for image-broker-python.
"""

from image_broker.types.image import (
    MAX_INPUT_IMAGE_BYTES,
    GeneratedImage,
    ImageData,
    ImageFormat,
    detect_format,
)
from image_broker.types.request import AUTO_BACKEND, GenerationRequest
from image_broker.types.result import GenerationResult

__all__ = [
    "AUTO_BACKEND",
    "MAX_INPUT_IMAGE_BYTES",
    "GeneratedImage",
    "GenerationRequest",
    "GenerationResult",
    "ImageData",
    "ImageFormat",
    "detect_format",
]
