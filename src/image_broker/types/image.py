"""
Image payload types.

Provides:
- ImageData: An input image for edit requests, loaded from a data URL,
  a filesystem path or a ``file://`` URL
- GeneratedImage: One encoded output image plus its format tag
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from pathlib import Path
from typing import Any, Literal
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, ConfigDict, Field

from image_broker.errors import ValidationError

MAX_INPUT_IMAGE_BYTES = 10 * 1024 * 1024
"""Decoded input images above this size are rejected."""

ImageFormat = Literal["png", "jpeg", "webp", "svg"]

_FORMAT_MEDIA_TYPES: dict[str, str] = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


def detect_format(data: bytes, default: ImageFormat = "png") -> ImageFormat:
    """Detect the image format from magic bytes.

    Args:
        data: Encoded image bytes
        default: Format to assume when the header is not recognized

    Returns:
        Format tag
    """
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if data.startswith(b"\xff\xd8\xff"):
        return "jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    head = data[:256].lstrip()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:1024]):
        return "svg"
    return default


def format_from_media_type(media_type: str | None, default: ImageFormat = "png") -> ImageFormat:
    """Map a MIME type such as ``image/jpeg`` onto a format tag."""
    if not media_type:
        return default
    subtype = media_type.split(";")[0].strip().lower().removeprefix("image/")
    if subtype in ("jpg", "jpeg"):
        return "jpeg"
    if subtype.startswith("svg"):
        return "svg"
    if subtype in ("png", "webp"):
        return subtype  # type: ignore[return-value]
    return default


def _guess_media_type(path: Path, data: bytes) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    if mime_type and mime_type.startswith("image/"):
        return mime_type
    return _FORMAT_MEDIA_TYPES[detect_format(data)]


class ImageData(BaseModel):
    """An input image supplied with an edit request."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(description="Raw image bytes")
    media_type: str = Field(default="image/png", description="MIME type of the image")

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def format(self) -> ImageFormat:
        return format_from_media_type(self.media_type, default=detect_format(self.data))

    def to_base64(self) -> str:
        """Encode the payload as standard base64 text."""
        return base64.standard_b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.to_base64()}"

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str | None = None) -> ImageData:
        """Create from raw bytes, enforcing the input size limit."""
        if not data:
            raise ValidationError("Image data is empty", field="image")
        if len(data) > MAX_INPUT_IMAGE_BYTES:
            raise ValidationError(
                "Image exceeds the maximum input size",
                field="image",
                expected=f"<= {MAX_INPUT_IMAGE_BYTES} bytes",
                actual=len(data),
            )
        if media_type is None:
            media_type = _FORMAT_MEDIA_TYPES[detect_format(data)]
        return cls(data=data, media_type=media_type)

    @classmethod
    def from_data_url(cls, url: str) -> ImageData:
        """Decode a ``data:<mime>;base64,<payload>`` URL.

        Raises:
            ValidationError: If the URL is malformed or the payload is not base64
        """
        header, sep, payload = url.partition(",")
        if not sep or not header.startswith("data:") or ";base64" not in header:
            raise ValidationError("Invalid image data URL", field="image", expected="data:<mime>;base64,<payload>")
        media_type = header[len("data:") :].split(";")[0] or None
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Invalid base64 image payload: {e}", field="image") from e
        return cls.from_bytes(data, media_type)

    @classmethod
    def from_path(cls, path: str | Path) -> ImageData:
        """Load an image from the filesystem.

        Raises:
            ValidationError: If the file does not exist or cannot be read
        """
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            raise ValidationError(f"Image file not found: {file_path}", field="image")
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise ValidationError(f"Cannot read image file {file_path}: {e}", field="image") from e
        return cls.from_bytes(data, _guess_media_type(file_path, data))

    @classmethod
    def from_reference(cls, ref: str | bytes | ImageData) -> ImageData:
        """Resolve an image reference.

        Accepts a data URL, a ``file://`` URL, a filesystem path, raw bytes,
        or an existing ImageData.
        """
        if isinstance(ref, ImageData):
            return ref
        if isinstance(ref, bytes):
            return cls.from_bytes(ref)
        ref = ref.strip()
        if ref.startswith("data:"):
            return cls.from_data_url(ref)
        if ref.startswith("file://"):
            return cls.from_path(unquote(urlparse(ref).path))
        return cls.from_path(ref)


class GeneratedImage(BaseModel):
    """One output image produced by a backend."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(description="Encoded image bytes")
    format: ImageFormat = Field(default="png", description="Image format tag")

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def media_type(self) -> str:
        return _FORMAT_MEDIA_TYPES[self.format]

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str | None = None) -> GeneratedImage:
        """Create from bytes, preferring magic-byte detection over the declared type."""
        declared = format_from_media_type(media_type) if media_type else "png"
        return cls(data=data, format=detect_format(data, default=declared))

    @classmethod
    def from_base64(cls, payload: str, media_type: str | None = None) -> GeneratedImage:
        """Decode a base64 payload (a data URL prefix is tolerated)."""
        if payload.startswith("data:"):
            header, _, payload = payload.partition(",")
            media_type = media_type or header[len("data:") :].split(";")[0]
        return cls.from_bytes(base64.b64decode(payload), media_type)

    def to_base64(self) -> str:
        return base64.standard_b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.to_base64()}"

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: ``{data: <base64>, format}``."""
        return {"data": self.to_base64(), "format": self.format}
