"""Tests for the tool-call boundary."""

import base64

import pytest

from image_broker.client import ToolHandlers
from image_broker.client.tools import TOOL_DEFINITIONS

PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\nbase").decode()


class TestToolDefinitions:
    """Tests for advertised tools."""

    def test_names(self) -> None:
        """Test the tool list."""
        names = [tool["name"] for tool in ToolHandlers.definitions()]
        assert names == ["health.ping", "config.providers", "image.generate", "image.edit"]

    def test_schemas(self) -> None:
        """Test required arguments."""
        tools = {tool.name: tool for tool in TOOL_DEFINITIONS}
        assert tools["image.generate"].input_schema["required"] == ["prompt"]
        assert tools["image.edit"].input_schema["required"] == ["prompt", "baseImage"]
        assert "inputSchema" in tools["image.edit"].to_dict()


class TestToolHandlers:
    """Tests for ToolHandlers."""

    @pytest.mark.asyncio
    async def test_ping(self, make_broker, fake_backend) -> None:
        """Test the health check."""
        tools = ToolHandlers(make_broker(fake_backend("openai")))
        assert await tools.call("health.ping") == "ok"

    @pytest.mark.asyncio
    async def test_providers(self, make_broker, fake_backend) -> None:
        """Test provider status."""
        tools = ToolHandlers(make_broker(fake_backend("openai"), fake_backend("fal", configured=False)))
        providers = await tools.call("config.providers", {})
        assert [(p["name"], p["configured"]) for p in providers] == [("openai", True), ("fal", False)]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_broker, fake_backend) -> None:
        """Test that unknown tools produce a validation error payload."""
        tools = ToolHandlers(make_broker(fake_backend("openai")))
        payload = await tools.call("image.upscale", {})
        assert payload["error"]["kind"] == "validation_error"
        assert payload["error"]["retryable"] is False

    @pytest.mark.asyncio
    async def test_generate(self, make_broker, fake_backend) -> None:
        """Test a successful generation payload."""
        tools = ToolHandlers(make_broker(fake_backend("openai"), fake_backend("ideogram")))
        payload = await tools.call(
            "image.generate",
            {"prompt": "logo with text 'Acme'", "width": 1024, "height": 1024},
        )
        assert payload["backend"] == "ideogram"
        assert payload["model"] == "ideogram-model"
        image = payload["images"][0]
        assert image["format"] == "png"
        assert base64.b64decode(image["data"]).startswith(b"\x89PNG")
        assert "warnings" not in payload

    @pytest.mark.asyncio
    async def test_generate_backend_name(self, make_broker, fake_backend) -> None:
        """Test the backendName argument."""
        tools = ToolHandlers(make_broker(fake_backend("openai"), fake_backend("stability")))
        payload = await tools.call("image.generate", {"prompt": "a cat", "backendName": "stability"})
        assert payload["backend"] == "stability"

    @pytest.mark.asyncio
    async def test_generate_validation_errors(self, make_broker, fake_backend) -> None:
        """Test that bad arguments come back as error payloads."""
        tools = ToolHandlers(make_broker(fake_backend("openai")))

        payload = await tools.call("image.generate", {})
        assert payload["error"]["kind"] == "validation_error"

        payload = await tools.call("image.generate", {"prompt": "a cat", "width": 10})
        assert payload["error"]["kind"] == "validation_error"

        payload = await tools.call("image.generate", {"prompt": "a cat", "baseImage": PNG_DATA_URL})
        assert payload["error"]["kind"] == "validation_error"

    @pytest.mark.asyncio
    async def test_generate_backend_failure(self, make_broker, fake_backend, errors) -> None:
        """Test that backend failures come back as error payloads."""
        tools = ToolHandlers(make_broker(fake_backend("openai", always_fail=errors["permanent"]("openai"))))
        payload = await tools.call("image.generate", {"prompt": "a cat"})
        assert payload == {
            "error": {"kind": "backend_error", "message": "openai: invalid prompt", "retryable": False}
        }

    @pytest.mark.asyncio
    async def test_all_backends_failed_payload(self, make_broker, fake_backend, errors) -> None:
        """Test the aggregated error payload."""
        tools = ToolHandlers(
            make_broker(
                fake_backend("openai", always_fail=errors["transient"]("openai")),
                fake_backend("stability", always_fail=errors["transient"]("stability")),
            )
        )
        payload = await tools.call("image.generate", {"prompt": "a cat"})
        assert payload["error"]["kind"] == "all_backends_failed"
        assert payload["error"]["retryable"] is True
        assert [a["backend"] for a in payload["error"]["attempts"]] == ["openai", "stability"]

    @pytest.mark.asyncio
    async def test_edit(self, make_broker, fake_backend) -> None:
        """Test an edit with a data URL base image."""
        stability = fake_backend("stability", supports_edit=True)
        tools = ToolHandlers(make_broker(stability))
        payload = await tools.call("image.edit", {"prompt": "make it blue", "baseImage": PNG_DATA_URL})
        assert payload["backend"] == "stability"
        assert stability.requests[0].base_image.data == b"\x89PNG\r\n\x1a\nbase"

    @pytest.mark.asyncio
    async def test_edit_without_base_image(self, make_broker, fake_backend) -> None:
        """Test edit argument validation."""
        tools = ToolHandlers(make_broker(fake_backend("stability", supports_edit=True)))
        payload = await tools.call("image.edit", {"prompt": "make it blue"})
        assert payload["error"]["kind"] == "validation_error"
