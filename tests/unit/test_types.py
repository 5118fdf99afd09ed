"""Tests for request, image and result types."""

import base64

import pytest
from pydantic import ValidationError as PydanticValidationError

from image_broker.errors import ValidationError
from image_broker.types import (
    MAX_INPUT_IMAGE_BYTES,
    GeneratedImage,
    GenerationRequest,
    GenerationResult,
    ImageData,
    detect_format,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16


def data_url(data: bytes, media_type: str = "image/png") -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode()}"


class TestGenerationRequest:
    """Tests for GenerationRequest."""

    def test_defaults(self) -> None:
        """Test a bare prompt request."""
        request = GenerationRequest(prompt="a red fox")
        assert request.is_auto
        assert not request.is_edit
        assert request.operation == "generate"
        assert request.explicit_backend is None

    def test_explicit_backend_normalized(self) -> None:
        """Test backend name normalization."""
        assert GenerationRequest(prompt="x", backend=" OpenAI ").explicit_backend == "openai"
        assert GenerationRequest(prompt="x", backend="AUTO").explicit_backend is None
        assert GenerationRequest(prompt="x", backend="").is_auto

    def test_immutable(self) -> None:
        """Test that requests are frozen."""
        request = GenerationRequest(prompt="x")
        with pytest.raises(PydanticValidationError):
            request.prompt = "y"  # type: ignore[misc]

    def test_schema_bounds(self) -> None:
        """Test pydantic bounds on numeric fields."""
        with pytest.raises(PydanticValidationError):
            GenerationRequest(prompt="x", width=32)
        with pytest.raises(PydanticValidationError):
            GenerationRequest(prompt="x", guidance=31)


class TestFromArguments:
    """Tests for building requests from tool arguments."""

    def test_camel_case_arguments(self) -> None:
        """Test alias mapping."""
        request = GenerationRequest.from_arguments(
            {"prompt": "a fox", "backendName": "openai", "width": 512, "height": 768, "seed": 7}
        )
        assert request.backend == "openai"
        assert (request.width, request.height) == (512, 768)
        assert request.seed == 7

    def test_none_values_ignored(self) -> None:
        """Test that null arguments fall back to defaults."""
        request = GenerationRequest.from_arguments({"prompt": "a fox", "width": None})
        assert request.width is None

    def test_missing_prompt(self) -> None:
        """Test that prompt is required."""
        with pytest.raises(ValidationError) as exc_info:
            GenerationRequest.from_arguments({"width": 512})
        assert exc_info.value.field == "prompt"

    def test_unknown_argument(self) -> None:
        """Test that unknown arguments are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            GenerationRequest.from_arguments({"prompt": "a fox", "colour": "red"})
        assert exc_info.value.field == "colour"

    def test_out_of_bounds_becomes_broker_error(self) -> None:
        """Test that pydantic errors surface as the broker's ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            GenerationRequest.from_arguments({"prompt": "a fox", "width": 10})
        assert exc_info.value.field == "width"
        assert exc_info.value.actual == 10

    def test_base_image_from_data_url(self) -> None:
        """Test edit arguments."""
        request = GenerationRequest.from_arguments(
            {"prompt": "make it blue", "baseImage": data_url(PNG), "maskImage": data_url(PNG)}
        )
        assert request.is_edit
        assert request.operation == "edit"
        assert request.base_image is not None
        assert request.base_image.data == PNG
        assert request.mask_image is not None


class TestImageData:
    """Tests for ImageData."""

    def test_from_data_url(self) -> None:
        """Test decoding a data URL."""
        image = ImageData.from_data_url(data_url(JPEG, "image/jpeg"))
        assert image.data == JPEG
        assert image.media_type == "image/jpeg"
        assert image.format == "jpeg"
        assert image.size_bytes == len(JPEG)

    def test_invalid_data_url(self) -> None:
        """Test malformed data URLs."""
        with pytest.raises(ValidationError):
            ImageData.from_data_url("data:image/png,notbase64")
        with pytest.raises(ValidationError):
            ImageData.from_data_url("data:image/png;base64,@@@")

    def test_empty_and_oversized(self) -> None:
        """Test the size limits."""
        with pytest.raises(ValidationError):
            ImageData.from_bytes(b"")
        with pytest.raises(ValidationError):
            ImageData.from_bytes(b"\x00" * (MAX_INPUT_IMAGE_BYTES + 1))

    def test_from_path(self, tmp_path) -> None:
        """Test loading from the filesystem."""
        path = tmp_path / "input.png"
        path.write_bytes(PNG)
        image = ImageData.from_reference(str(path))
        assert image.data == PNG
        assert image.media_type == "image/png"

    def test_from_file_url(self, tmp_path) -> None:
        """Test loading from a file:// URL."""
        path = tmp_path / "input.png"
        path.write_bytes(PNG)
        assert ImageData.from_reference(path.as_uri()).data == PNG

    def test_missing_path(self, tmp_path) -> None:
        """Test a path that does not exist."""
        with pytest.raises(ValidationError):
            ImageData.from_reference(str(tmp_path / "missing.png"))

    def test_round_trip_data_url(self) -> None:
        """Test to_data_url output."""
        image = ImageData.from_bytes(PNG)
        assert image.to_data_url().startswith("data:image/png;base64,")


class TestImageFormats:
    """Tests for format detection and GeneratedImage."""

    def test_detect_format(self) -> None:
        """Test magic byte detection."""
        assert detect_format(PNG) == "png"
        assert detect_format(JPEG) == "jpeg"
        assert detect_format(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "webp"
        assert detect_format(b'<svg xmlns="http://www.w3.org/2000/svg"></svg>') == "svg"
        assert detect_format(b"unknown", default="jpeg") == "jpeg"

    def test_magic_bytes_win_over_declared_type(self) -> None:
        """Test that the declared media type is only a fallback."""
        image = GeneratedImage.from_base64(data_url(PNG, "image/jpeg"))
        assert image.format == "png"
        assert image.media_type == "image/png"

    def test_to_dict(self) -> None:
        """Test the wire shape."""
        image = GeneratedImage(data=PNG, format="png")
        assert image.to_dict() == {"data": base64.b64encode(PNG).decode(), "format": "png"}


class TestGenerationResult:
    """Tests for GenerationResult."""

    def test_requires_an_image(self) -> None:
        """Test that a result without images is invalid."""
        with pytest.raises(PydanticValidationError):
            GenerationResult(images=(), backend="openai", model="dall-e-3")

    def test_with_warnings(self) -> None:
        """Test appending warnings without duplicates."""
        result = GenerationResult(
            images=(GeneratedImage(data=PNG),),
            backend="openai",
            model="dall-e-3",
            warnings=("a",),
        )
        updated = result.with_warnings("a", "b", "")
        assert updated.warnings == ("a", "b")
        assert result.warnings == ("a",)

    def test_to_dict(self) -> None:
        """Test the wire shape."""
        result = GenerationResult(
            images=(GeneratedImage(data=PNG), GeneratedImage(data=JPEG, format="jpeg")),
            backend="openai",
            model="dall-e-3",
        )
        payload = result.to_dict()
        assert "warnings" not in payload
        assert [image["format"] for image in payload["images"]] == ["png", "jpeg"]
        assert result.total_bytes == len(PNG) + len(JPEG)
        assert result.first.format == "png"
        assert "warnings" in result.with_warnings("note").to_dict()
