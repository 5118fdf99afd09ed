"""Backend adapters against mocked HTTP endpoints."""

import base64
import json

import httpx
import pytest

from image_broker import ImageBroker
from image_broker.backends import (
    BFLBackend,
    ClipdropBackend,
    FalBackend,
    GeminiBackend,
    IdeogramBackend,
    OpenAIBackend,
    RecraftBackend,
    ReplicateBackend,
    StabilityBackend,
)
from image_broker.backends.gemini import GEMINI_WARNINGS
from image_broker.backends.replicate import MODEL_VERSIONS
from image_broker.completion import PollConfig
from image_broker.config import DictConfigSource
from image_broker.errors import BackendError, BrokerTimeoutError, ErrorClass
from image_broker.resilience import RetryConfig
from image_broker.types import GenerationRequest, ImageData

GEMINI_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-2.5-flash-image-preview:generateContent?key=gm-test-gemini-1234"
)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def json_body(request: httpx.Request) -> dict:
    return json.loads(request.content)


class TestOpenAIBackend:
    """Tests for the OpenAI adapter."""

    @pytest.mark.asyncio
    async def test_generate(self, httpx_mock, credentials, png_bytes) -> None:
        """Test DALL-E 3 generation."""
        httpx_mock.add_response(
            url="https://api.openai.com/v1/images/generations",
            method="POST",
            json={"created": 1, "data": [{"b64_json": b64(png_bytes)}]},
        )
        backend = OpenAIBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="a red fox", width=1600, height=900))
        await backend.aclose()

        assert result.backend == "openai"
        assert result.model == "dall-e-3"
        assert result.first.data == png_bytes
        assert result.warnings == ("Requested size 1600x900 was mapped to 1792x1024",)

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer sk-test-openai-123456"
        body = json_body(request)
        assert body["size"] == "1792x1024"
        assert body["response_format"] == "b64_json"
        assert body["prompt"] == "a red fox"

    @pytest.mark.asyncio
    async def test_edit(self, httpx_mock, credentials, png_bytes) -> None:
        """Test DALL-E 2 edits."""
        httpx_mock.add_response(
            url="https://api.openai.com/v1/images/edits",
            method="POST",
            json={"data": [{"b64_json": b64(png_bytes)}]},
        )
        backend = OpenAIBackend(credentials)
        request = GenerationRequest(prompt="make it blue", base_image=ImageData.from_bytes(png_bytes))
        result = await backend.edit(request)
        await backend.aclose()
        assert result.model == "dall-e-2"
        assert result.first.format == "png"

    @pytest.mark.asyncio
    async def test_rate_limited(self, httpx_mock, credentials) -> None:
        """Test that a 429 becomes a retryable error."""
        httpx_mock.add_response(
            url="https://api.openai.com/v1/images/generations",
            method="POST",
            status_code=429,
            headers={"Retry-After": "7"},
            json={"error": {"message": "Too many requests", "type": "requests"}},
        )
        backend = OpenAIBackend(credentials)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a red fox"))
        await backend.aclose()

        error = exc_info.value
        assert error.retryable is True
        assert error.status_code == 429
        assert error.error_class == ErrorClass.RATE_LIMITED
        assert error.retry_after == 7.0
        assert error.message.startswith("openai API error (429)")

    @pytest.mark.asyncio
    async def test_unauthorized(self, httpx_mock, credentials) -> None:
        """Test that a 401 is permanent."""
        httpx_mock.add_response(
            url="https://api.openai.com/v1/images/generations",
            method="POST",
            status_code=401,
            json={"error": {"message": "Incorrect API key provided"}},
        )
        backend = OpenAIBackend(credentials)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a red fox"))
        await backend.aclose()
        assert exc_info.value.retryable is False
        assert exc_info.value.error_class == ErrorClass.AUTHENTICATION

    @pytest.mark.asyncio
    async def test_connection_error(self, httpx_mock, credentials) -> None:
        """Test that network failures are retryable."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        backend = OpenAIBackend(credentials)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a red fox"))
        await backend.aclose()
        assert exc_info.value.retryable is True
        assert exc_info.value.error_class == ErrorClass.NETWORK

    @pytest.mark.asyncio
    async def test_empty_data(self, httpx_mock, credentials) -> None:
        """Test a 200 without images."""
        httpx_mock.add_response(
            url="https://api.openai.com/v1/images/generations",
            method="POST",
            json={"data": []},
        )
        backend = OpenAIBackend(credentials)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a red fox"))
        await backend.aclose()
        assert exc_info.value.retryable is False


class TestStabilityBackend:
    """Tests for the Stability adapter."""

    @pytest.mark.asyncio
    async def test_generate(self, httpx_mock, credentials, png_bytes) -> None:
        """Test raw-bytes generation."""
        httpx_mock.add_response(
            url="https://api.stability.ai/v2beta/stable-image/generate/core",
            method="POST",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = StabilityBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="a lighthouse", width=1920, height=1080))
        await backend.aclose()

        assert result.first.data == png_bytes
        assert result.model == "stable-image-core-v1"
        request = httpx_mock.get_request()
        assert request.headers["Accept"] == "image/*"
        assert request.headers["Authorization"] == "Bearer sk-test-stability-1234"
        assert request.headers["Content-Type"].startswith("multipart/form-data")

    @pytest.mark.asyncio
    async def test_edit(self, httpx_mock, credentials, png_bytes) -> None:
        """Test image-to-image edits."""
        httpx_mock.add_response(
            url="https://api.stability.ai/v2beta/stable-image/generate/sd3",
            method="POST",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = StabilityBackend(credentials)
        request = GenerationRequest(prompt="add snow", base_image=ImageData.from_bytes(png_bytes))
        result = await backend.edit(request)
        await backend.aclose()
        assert result.model == "sd3"

    @pytest.mark.asyncio
    async def test_server_error(self, httpx_mock, credentials) -> None:
        """Test that a 500 is retryable."""
        httpx_mock.add_response(
            url="https://api.stability.ai/v2beta/stable-image/generate/core",
            method="POST",
            status_code=500,
            json={"name": "internal_error", "errors": ["An unexpected error occurred"]},
        )
        backend = StabilityBackend(credentials)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a lighthouse"))
        await backend.aclose()
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 500


class TestReplicateBackend:
    """Tests for the Replicate adapter."""

    @pytest.mark.asyncio
    async def test_generate_polls_until_ready(self, httpx_mock, credentials, fast_poll, png_bytes) -> None:
        """Test prediction submission, polling and download."""
        httpx_mock.add_response(
            url="https://api.replicate.com/v1/predictions",
            method="POST",
            json={"id": "pred-1", "status": "starting"},
        )
        httpx_mock.add_response(
            url="https://api.replicate.com/v1/predictions/pred-1",
            method="GET",
            json={"id": "pred-1", "status": "processing"},
        )
        httpx_mock.add_response(
            url="https://api.replicate.com/v1/predictions/pred-1",
            method="GET",
            json={"id": "pred-1", "status": "succeeded", "output": ["https://replicate.delivery/out.png"]},
        )
        httpx_mock.add_response(
            url="https://replicate.delivery/out.png",
            method="GET",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )

        backend = ReplicateBackend(credentials, poll=fast_poll)
        result = await backend.generate(GenerationRequest(prompt="a castle", seed=7))
        await backend.aclose()

        assert result.model == "black-forest-labs/flux-schnell"
        assert result.first.data == png_bytes

        submit = httpx_mock.get_requests(method="POST")[0]
        body = json_body(submit)
        assert body["version"] == MODEL_VERSIONS["black-forest-labs/flux-schnell"]
        assert body["input"]["seed"] == 7
        download = httpx_mock.get_request(url="https://replicate.delivery/out.png")
        assert "Authorization" not in download.headers

    @pytest.mark.asyncio
    async def test_failed_prediction(self, httpx_mock, credentials, fast_poll) -> None:
        """Test a prediction that fails."""
        httpx_mock.add_response(
            url="https://api.replicate.com/v1/predictions",
            method="POST",
            json={"id": "pred-2", "status": "starting"},
        )
        httpx_mock.add_response(
            url="https://api.replicate.com/v1/predictions/pred-2",
            method="GET",
            json={"id": "pred-2", "status": "failed", "error": "NSFW content detected"},
        )
        backend = ReplicateBackend(credentials, poll=fast_poll)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a castle"))
        await backend.aclose()
        assert exc_info.value.retryable is False
        assert "NSFW content detected" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_never_completes(self, httpx_mock, credentials) -> None:
        """Test the polling budget."""
        httpx_mock.add_response(
            url="https://api.replicate.com/v1/predictions",
            method="POST",
            json={"id": "pred-3", "status": "starting"},
        )
        for _ in range(2):
            httpx_mock.add_response(
                url="https://api.replicate.com/v1/predictions/pred-3",
                method="GET",
                json={"id": "pred-3", "status": "processing"},
            )
        backend = ReplicateBackend(
            credentials,
            poll=PollConfig(initial_delay_ms=1, max_delay_ms=1, max_attempts=2),
        )
        with pytest.raises(BrokerTimeoutError):
            await backend.generate(GenerationRequest(prompt="a castle"))
        await backend.aclose()


class TestGeminiBackend:
    """Tests for the Gemini adapter."""

    @pytest.mark.asyncio
    async def test_generate(self, httpx_mock, credentials, png_bytes) -> None:
        """Test inline image data in the response."""
        httpx_mock.add_response(
            url=GEMINI_URL,
            method="POST",
            json={
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "Here is your image"},
                                {"inlineData": {"mimeType": "image/png", "data": b64(png_bytes)}},
                            ]
                        }
                    }
                ]
            },
        )
        backend = GeminiBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="a banana"))
        await backend.aclose()

        assert result.first.data == png_bytes
        assert result.warnings == GEMINI_WARNINGS
        body = json_body(httpx_mock.get_request())
        assert body["contents"][0]["parts"] == [{"text": "a banana"}]

    @pytest.mark.asyncio
    async def test_text_only_response(self, httpx_mock, credentials) -> None:
        """Test that a prose answer is a permanent error."""
        httpx_mock.add_response(
            url=GEMINI_URL,
            method="POST",
            json={"candidates": [{"content": {"parts": [{"text": "I can't create that image."}]}}]},
        )
        backend = GeminiBackend(credentials)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a banana"))
        await backend.aclose()
        assert exc_info.value.retryable is False
        assert exc_info.value.message == "I can't create that image."


class TestIdeogramBackend:
    """Tests for the Ideogram adapter."""

    @pytest.mark.asyncio
    async def test_generate_text_prompt(self, httpx_mock, credentials, png_bytes) -> None:
        """Test text-heavy prompts disable magic prompt."""
        httpx_mock.add_response(
            url="https://api.ideogram.ai/generate",
            method="POST",
            json={"data": [{"url": "https://ideogram.ai/api/images/ephemeral/abc.png"}]},
        )
        httpx_mock.add_response(
            url="https://ideogram.ai/api/images/ephemeral/abc.png",
            method="GET",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = IdeogramBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="logo with text 'Acme'", width=1024, height=1024))
        await backend.aclose()

        assert result.first.data == png_bytes
        assert result.model == "V_2"
        post = httpx_mock.get_request(method="POST")
        assert post.headers["Api-Key"] == "ideo-test-key-123456"
        image_request = json_body(post)["image_request"]
        assert image_request["magic_prompt_option"] == "OFF"
        assert image_request["style_type"] == "DESIGN"
        assert image_request["aspect_ratio"] == "ASPECT_1_1"


class TestBFLBackend:
    """Tests for the Black Forest Labs adapter."""

    @pytest.mark.asyncio
    async def test_generate_polls_until_ready(self, httpx_mock, credentials, fast_poll, png_bytes) -> None:
        """Test task submission, polling and sample download."""
        httpx_mock.add_response(
            url="https://api.bfl.ai/v1/flux-pro-1.1",
            method="POST",
            json={"id": "task-1"},
        )
        httpx_mock.add_response(
            url="https://api.bfl.ai/v1/get_result?id=task-1",
            method="GET",
            json={"id": "task-1", "status": "Pending"},
        )
        httpx_mock.add_response(
            url="https://api.bfl.ai/v1/get_result?id=task-1",
            method="GET",
            json={"id": "task-1", "status": "Ready", "result": {"sample": "https://delivery.bfl.ai/s.png"}},
        )
        httpx_mock.add_response(
            url="https://delivery.bfl.ai/s.png",
            method="GET",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = BFLBackend(credentials, poll=fast_poll)
        result = await backend.generate(GenerationRequest(prompt="a mountain lake"))
        await backend.aclose()

        assert result.model == "flux1.1-pro"
        assert result.first.data == png_bytes
        body = json_body(httpx_mock.get_request(method="POST"))
        assert body["steps"] == 28
        assert body["width"] == 1024

    @pytest.mark.asyncio
    async def test_large_size_uses_ultra(self, httpx_mock, credentials, fast_poll, png_bytes) -> None:
        """Test the ultra endpoint for large outputs and an immediate sample."""
        httpx_mock.add_response(
            url="https://api.bfl.ai/v1/flux-pro-1.1-ultra",
            method="POST",
            json={"sample": b64(png_bytes)},
        )
        backend = BFLBackend(credentials, poll=fast_poll)
        result = await backend.generate(GenerationRequest(prompt="a mountain lake", width=2048, height=2048))
        await backend.aclose()
        assert result.model == "flux1.1-pro-ultra"
        assert result.first.data == png_bytes

    @pytest.mark.asyncio
    async def test_moderated(self, httpx_mock, credentials, fast_poll) -> None:
        """Test a moderated task."""
        httpx_mock.add_response(
            url="https://api.bfl.ai/v1/flux-pro-1.1",
            method="POST",
            json={"id": "task-2"},
        )
        httpx_mock.add_response(
            url="https://api.bfl.ai/v1/get_result?id=task-2",
            method="GET",
            json={"id": "task-2", "status": "Content Moderated"},
        )
        backend = BFLBackend(credentials, poll=fast_poll)
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(GenerationRequest(prompt="a mountain lake"))
        await backend.aclose()
        assert exc_info.value.retryable is False
        assert "Content Moderated" in exc_info.value.message


class TestFalBackend:
    """Tests for the fal.ai adapter."""

    @pytest.mark.asyncio
    async def test_synchronous_result(self, httpx_mock, credentials, png_bytes) -> None:
        """Test images returned directly from the submit call."""
        httpx_mock.add_response(
            url="https://queue.fal.run/fal-ai/fast-sdxl",
            method="POST",
            json={
                "images": [{"url": "data:image/png;base64," + b64(png_bytes)}],
                "has_nsfw_concepts": [True],
            },
        )
        backend = FalBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="quick draft sketch", width=1920, height=1080))
        await backend.aclose()

        assert result.first.data == png_bytes
        assert result.warnings == ("Content may be NSFW",)
        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Key fal-test-key-123456"
        body = json_body(request)
        assert body["image_size"] == "landscape_16_9"
        assert body["num_inference_steps"] == 4

    @pytest.mark.asyncio
    async def test_queued_result(self, httpx_mock, credentials, fast_poll, png_bytes) -> None:
        """Test queue polling and result fetch."""
        httpx_mock.add_response(
            url="https://queue.fal.run/fal-ai/fast-sdxl",
            method="POST",
            json={"request_id": "req-1", "status": "IN_QUEUE"},
        )
        httpx_mock.add_response(
            url="https://queue.fal.run/fal-ai/fast-sdxl/requests/req-1/status",
            method="GET",
            json={"status": "IN_PROGRESS"},
        )
        httpx_mock.add_response(
            url="https://queue.fal.run/fal-ai/fast-sdxl/requests/req-1/status",
            method="GET",
            json={"status": "COMPLETED"},
        )
        httpx_mock.add_response(
            url="https://queue.fal.run/fal-ai/fast-sdxl/requests/req-1",
            method="GET",
            json={"images": [{"url": "https://fal.media/files/out.png"}]},
        )
        httpx_mock.add_response(
            url="https://fal.media/files/out.png",
            method="GET",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = FalBackend(credentials, poll=fast_poll)
        result = await backend.generate(GenerationRequest(prompt="quick draft sketch"))
        await backend.aclose()
        assert result.first.data == png_bytes
        assert result.warnings == ()


class TestRecraftBackend:
    """Tests for the Recraft adapter."""

    @pytest.mark.asyncio
    async def test_vector_output(self, httpx_mock, credentials) -> None:
        """Test vector prompts produce SVG output."""
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"></svg>'
        httpx_mock.add_response(
            url="https://external.api.recraft.ai/v1/images/generations",
            method="POST",
            json={"data": [{"url": "https://img.recraft.ai/out.svg"}]},
        )
        httpx_mock.add_response(
            url="https://img.recraft.ai/out.svg",
            method="GET",
            content=svg,
            headers={"Content-Type": "image/svg+xml"},
        )
        backend = RecraftBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="a vector icon of a fox"))
        await backend.aclose()

        assert result.first.format == "svg"
        assert result.first.data == svg
        assert result.warnings == ("Vector output (SVG format) - scalable and print-ready",)
        body = json_body(httpx_mock.get_request(method="POST"))
        assert body["style"] == "vector_illustration"
        assert body["size"] == "square_hd"


class TestClipdropBackend:
    """Tests for the Clipdrop adapter."""

    @pytest.mark.asyncio
    async def test_generate(self, httpx_mock, credentials, png_bytes) -> None:
        """Test text-to-image."""
        httpx_mock.add_response(
            url="https://clipdrop-api.co/text-to-image/v1",
            method="POST",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = ClipdropBackend(credentials)
        result = await backend.generate(GenerationRequest(prompt="a teapot"))
        await backend.aclose()
        assert result.model == "stable-diffusion-xl"
        assert httpx_mock.get_request().headers["x-api-key"] == "clipdrop-test-key-1234"

    @pytest.mark.asyncio
    async def test_remove_background(self, httpx_mock, credentials, png_bytes) -> None:
        """Test the edit endpoint chosen from the prompt."""
        httpx_mock.add_response(
            url="https://clipdrop-api.co/remove-background/v1",
            method="POST",
            content=png_bytes,
            headers={"Content-Type": "image/png"},
        )
        backend = ClipdropBackend(credentials)
        request = GenerationRequest(prompt="remove background", base_image=ImageData.from_bytes(png_bytes))
        result = await backend.edit(request)
        await backend.aclose()
        assert result.model == "clipdrop-remove-background"
        assert result.warnings == ("Background removed - image has transparency",)


class TestBrokerOverHttp:
    """End-to-end broker behavior with mocked services."""

    @pytest.mark.asyncio
    async def test_falls_back_to_mock(self, httpx_mock) -> None:
        """Test an overloaded service falling back to the mock backend."""
        for _ in range(3):
            httpx_mock.add_response(
                url="https://api.openai.com/v1/images/generations",
                method="POST",
                status_code=503,
                json={"error": {"message": "Service overloaded"}},
            )
        broker = (
            ImageBroker.builder()
            .config(DictConfigSource({"OPENAI_API_KEY": "sk-test-openai-123456"}))
            .retry(RetryConfig(max_attempts=3, base_delay_ms=1, max_delay_ms=1, jitter_fraction=0))
            .build()
        )
        async with broker:
            result = await broker.generate(GenerationRequest(prompt="a cat on a sofa", width=128, height=128))

        assert result.backend == "mock"
        assert len(httpx_mock.get_requests()) == 3
        assert any(w.startswith("openai failed (") for w in result.warnings)
