"""
OpenAI Images API backend (DALL-E).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from image_broker.backends.base import (
    BackendCapabilities,
    malformed_response,
    missing_credentials,
    pick_model,
    read_credential,
    require_base_image,
)
from image_broker.backends.http import BackendHttpClient
from image_broker.types.image import GeneratedImage
from image_broker.types.result import GenerationResult

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.request import GenerationRequest

OPENAI_BASE_URL = "https://api.openai.com/v1"
CREDENTIAL_KEYS = ["OPENAI_API_KEY"]


def map_size(width: int | None, height: int | None, model: str = "dall-e-3") -> str:
    """Map requested dimensions onto a size the model accepts."""
    if model == "dall-e-2":
        side = max(width or 1024, height or 1024)
        for candidate in (256, 512):
            if side <= candidate:
                return f"{candidate}x{candidate}"
        return "1024x1024"

    if width and height:
        if (width, height) in ((1024, 1024), (1792, 1024), (1024, 1792)):
            return f"{width}x{height}"
        ratio = width / height
        if ratio > 1.5:
            return "1792x1024"
        if ratio < 0.7:
            return "1024x1792"
    return "1024x1024"


class OpenAIBackend:
    """DALL-E 3 generation and DALL-E 2 edits.

    Args:
        config: Credential source (OPENAI_API_KEY)
        timeout: HTTP timeout in seconds
        http: Preconfigured HTTP client (tests)
    """

    name = "openai"

    def __init__(
        self,
        config: ConfigSource,
        *,
        timeout: float = 120.0,
        http: BackendHttpClient | None = None,
    ) -> None:
        self._api_key = read_credential(config, *CREDENTIAL_KEYS)
        self._http = http or BackendHttpClient(
            self.name,
            OPENAI_BASE_URL,
            headers={"Authorization": f"Bearer {self._api_key}"} if self._api_key else {},
            timeout=timeout,
        )

    def is_configured(self) -> bool:
        return self._api_key is not None

    def required_credentials(self) -> list[str]:
        return list(CREDENTIAL_KEYS)

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=1792,
            max_height=1792,
            supported_models=("dall-e-3", "dall-e-2"),
            default_model="dall-e-3",
        )

    def _images(self, body: Any) -> tuple[GeneratedImage, ...]:
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            raise malformed_response(self.name, "response contained no images", body)
        images = []
        for item in data:
            payload = item.get("b64_json")
            if not payload:
                raise malformed_response(self.name, "image entry without b64_json", item)
            images.append(GeneratedImage.from_base64(payload, "image/png"))
        return tuple(images)

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)

        model = pick_model(request, self.capabilities())
        size = map_size(request.width, request.height, model)
        body = await self._http.post_json(
            "/images/generations",
            {
                "model": model,
                "prompt": request.prompt,
                "size": size,
                "response_format": "b64_json",
                "n": 1,
            },
        )

        warnings: tuple[str, ...] = ()
        if request.width and request.height and size != f"{request.width}x{request.height}":
            warnings = (f"Requested size {request.width}x{request.height} was mapped to {size}",)
        return GenerationResult(images=self._images(body), backend=self.name, model=model, warnings=warnings)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)
        base = require_base_image(request)

        files: dict[str, Any] = {"image": ("image.png", base.data, base.media_type)}
        if request.mask_image is not None:
            files["mask"] = ("mask.png", request.mask_image.data, request.mask_image.media_type)

        # Edits are only available on DALL-E 2
        model = "dall-e-2"
        response = await self._http.request(
            "POST",
            "/images/edits",
            data={
                "model": model,
                "prompt": request.prompt,
                "response_format": "b64_json",
                "n": "1",
                "size": map_size(request.width, request.height, model),
            },
            files=files,
        )
        body = self._http.parse_json(response)
        return GenerationResult(images=self._images(body), backend=self.name, model=model)

    async def aclose(self) -> None:
        await self._http.close()
