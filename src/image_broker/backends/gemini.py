"""
Google Gemini image backend (generateContent with inline image parts).
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
from image_broker.errors import BackendError, ErrorClass
from image_broker.telemetry.logger import get_logger, truncate_prompt
from image_broker.types.image import GeneratedImage
from image_broker.types.result import GenerationResult

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.request import GenerationRequest

logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
CREDENTIAL_KEYS = ["GEMINI_API_KEY"]
DEFAULT_MODEL = "gemini-2.5-flash-image-preview"

GEMINI_WARNINGS = (
    "All Gemini images include a SynthID watermark",
    "Gemini currently only supports 1:1 (square) aspect ratio",
)

_GENERATION_CONFIG = {
    "temperature": 0.8,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 8192,
}


class GeminiBackend:
    """Gemini 2.5 Flash Image adapter.

    The API key travels as the ``key`` query parameter; output is always square.
    """

    name = "gemini"

    def __init__(
        self,
        config: ConfigSource,
        *,
        timeout: float = 120.0,
        http: BackendHttpClient | None = None,
    ) -> None:
        self._api_key = read_credential(config, *CREDENTIAL_KEYS)
        self._http = http or BackendHttpClient(self.name, GEMINI_BASE_URL, timeout=timeout)

    def is_configured(self) -> bool:
        return self._api_key is not None

    def required_credentials(self) -> list[str]:
        return list(CREDENTIAL_KEYS)

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=3072,
            max_height=3072,
            supported_models=(DEFAULT_MODEL,),
            default_model=DEFAULT_MODEL,
        )

    async def _generate_content(self, model: str, parts: list[dict[str, Any]]) -> tuple[GeneratedImage, ...]:
        body = await self._http.post_json(
            f"/models/{model}:generateContent",
            {"contents": [{"parts": parts}], "generationConfig": _GENERATION_CONFIG},
            params={"key": self._api_key},
        )
        candidates = body.get("candidates") if isinstance(body, dict) else None
        response_parts = (candidates or [{}])[0].get("content", {}).get("parts") or []
        if not response_parts:
            raise malformed_response(self.name, "no image generated in response", body)

        images = []
        text = None
        for part in response_parts:
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                images.append(GeneratedImage.from_base64(inline["data"], inline.get("mimeType") or "image/png"))
            elif part.get("text") and text is None:
                text = part["text"]

        if not images:
            # The model answered in prose, usually a refusal or a plan limitation
            logger.warning("Gemini returned text instead of an image", backend=self.name)
            raise BackendError(
                text or "Gemini returned no image data",
                backend=self.name,
                retryable=False,
                error_class=ErrorClass.INVALID_REQUEST,
                raw_error=body,
            )
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
        logger.debug("Gemini generate", backend=self.name, model=model, prompt=truncate_prompt(request.prompt))
        images = await self._generate_content(model, [{"text": request.prompt}])
        return GenerationResult(images=images, backend=self.name, model=model, warnings=GEMINI_WARNINGS)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)
        base = require_base_image(request)

        model = pick_model(request, self.capabilities())
        parts: list[dict[str, Any]] = [
            {"text": request.prompt},
            {"inlineData": {"mimeType": base.media_type, "data": base.to_base64()}},
        ]
        if request.mask_image is not None:
            parts.append(
                {"inlineData": {"mimeType": request.mask_image.media_type, "data": request.mask_image.to_base64()}}
            )
        images = await self._generate_content(model, parts)
        return GenerationResult(images=images, backend=self.name, model=model, warnings=GEMINI_WARNINGS[:1])

    async def aclose(self) -> None:
        await self._http.close()
