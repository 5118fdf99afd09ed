"""
Ideogram backend, strongest at legible text in images.
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
from image_broker.telemetry.logger import get_logger, truncate_prompt
from image_broker.types.image import GeneratedImage
from image_broker.types.result import GenerationResult

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.request import GenerationRequest

logger = get_logger(__name__)

IDEOGRAM_BASE_URL = "https://api.ideogram.ai"
CREDENTIAL_KEYS = ["IDEOGRAM_API_KEY"]
DEFAULT_MODEL = "V_2"

ASPECT_RATIOS = {
    "ASPECT_1_1": 1.0,
    "ASPECT_16_9": 16 / 9,
    "ASPECT_9_16": 9 / 16,
    "ASPECT_4_3": 4 / 3,
    "ASPECT_3_4": 3 / 4,
    "ASPECT_10_16": 10 / 16,
    "ASPECT_16_10": 16 / 10,
}

TEXT_KEYWORDS = (
    "text", "logo", "poster", "banner", "sign", "quote", "typography",
    "lettering", "word", "title", "headline", "label", "badge", "sticker",
)

_STYLE_PRESETS = (
    (("logo", "brand", "poster", "flyer"), "DESIGN"),
    (("photo", "realistic"), "REALISTIC"),
    (("anime", "manga"), "ANIME"),
    (("3d", "render"), "RENDER_3D"),
)


def ideogram_aspect_ratio(width: int | None, height: int | None) -> str:
    """Closest Ideogram aspect ratio enum for the requested size."""
    if not width or not height:
        return "ASPECT_1_1"
    target = width / height
    return min(ASPECT_RATIOS, key=lambda name: abs(ASPECT_RATIOS[name] - target))


def detect_style(prompt: str) -> str | None:
    lower = prompt.lower()
    for keywords, style in _STYLE_PRESETS:
        if any(k in lower for k in keywords):
            return style
    return None


class IdeogramBackend:
    """Ideogram generate and edit adapter."""

    name = "ideogram"

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
            IDEOGRAM_BASE_URL,
            headers={"Api-Key": self._api_key} if self._api_key else {},
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
            max_width=2048,
            max_height=2048,
            supported_models=("V_2", "V_2_TURBO", "V_1"),
            default_model=DEFAULT_MODEL,
        )

    async def _images(self, body: Any) -> tuple[GeneratedImage, ...]:
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            raise malformed_response(self.name, "response contained no images", body)
        images = []
        for item in data:
            if item.get("url"):
                content, content_type = await self._http.download(item["url"])
                images.append(GeneratedImage.from_bytes(content, content_type))
            elif item.get("base64"):
                images.append(GeneratedImage.from_base64(item["base64"], "image/png"))
            else:
                raise malformed_response(self.name, "image entry without url or base64", item)
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
        lower = request.prompt.lower()
        text_heavy = any(k in lower for k in TEXT_KEYWORDS)
        image_request: dict[str, Any] = {
            "prompt": request.prompt,
            "model": model,
            "aspect_ratio": ideogram_aspect_ratio(request.width, request.height),
            # Magic prompt rewrites wording, which breaks exact lettering
            "magic_prompt_option": "OFF" if text_heavy else "AUTO",
        }
        style = detect_style(request.prompt)
        if style:
            image_request["style_type"] = style
        if request.seed is not None:
            image_request["seed"] = request.seed

        logger.debug("Ideogram generate", backend=self.name, model=model, prompt=truncate_prompt(request.prompt))
        body = await self._http.post_json("/generate", {"image_request": image_request})
        return GenerationResult(images=await self._images(body), backend=self.name, model=model)

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
        response = await self._http.request(
            "POST",
            "/v1/ideogram-v3/edit",
            data={"prompt": request.prompt},
            files=files,
        )
        body = self._http.parse_json(response)
        return GenerationResult(images=await self._images(body), backend=self.name, model="V_3")

    async def aclose(self) -> None:
        await self._http.close()
