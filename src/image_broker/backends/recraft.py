"""
Recraft V3 backend (raster and vector output).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from image_broker.backends.base import (
    BackendCapabilities,
    edit_not_supported,
    malformed_response,
    missing_credentials,
    read_credential,
)
from image_broker.backends.http import BackendHttpClient
from image_broker.telemetry.logger import get_logger, truncate_prompt
from image_broker.types.image import GeneratedImage
from image_broker.types.result import GenerationResult

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.request import GenerationRequest

logger = get_logger(__name__)

RECRAFT_BASE_URL = "https://external.api.recraft.ai/v1"
CREDENTIAL_KEYS = ["RECRAFT_API_KEY"]
RECRAFT_MODEL = "recraftv3"

_VECTOR_HINTS = ("vector", "svg", "scalable")


def size_preset(width: int | None, height: int | None) -> str:
    width = width or 1024
    height = height or 1024
    if width == height:
        return "square_hd" if width >= 1024 else "square"
    if width > height:
        return "landscape_16_9" if width / height > 1.5 else "landscape_4_3"
    return "portrait_16_9" if height / width > 1.5 else "portrait_4_3"


class RecraftBackend:
    """Recraft adapter; prompts mentioning vectors or SVG get vector output."""

    name = "recraft"

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
            RECRAFT_BASE_URL,
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
            supports_edit=False,
            max_width=2048,
            max_height=2048,
            supported_models=(RECRAFT_MODEL,),
            default_model=RECRAFT_MODEL,
        )

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)

        lower = request.prompt.lower()
        vector = any(hint in lower for hint in _VECTOR_HINTS)
        logger.debug("Recraft generate", backend=self.name, vector=vector, prompt=truncate_prompt(request.prompt))
        body = await self._http.post_json(
            "/images/generations",
            {
                "prompt": request.prompt,
                "style": "vector_illustration" if vector else "realistic_image",
                "size": size_preset(request.width, request.height),
            },
        )
        data = body.get("data") if isinstance(body, dict) else None
        if not data or not data[0].get("url"):
            raise malformed_response(self.name, "no images returned", body)

        content, content_type = await self._http.download(data[0]["url"])
        if vector:
            image = GeneratedImage(data=content, format="svg")
            warnings: tuple[str, ...] = ("Vector output (SVG format) - scalable and print-ready",)
        else:
            image = GeneratedImage.from_bytes(content, content_type)
            warnings = ()
        return GenerationResult(images=(image,), backend=self.name, model=RECRAFT_MODEL, warnings=warnings)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        raise edit_not_supported(self.name)

    async def aclose(self) -> None:
        await self._http.close()
