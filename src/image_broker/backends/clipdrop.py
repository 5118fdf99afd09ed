"""
Clipdrop backend.

Text-to-image plus a family of prompt-selected edit endpoints (background
removal, cleanup, upscale and so on). Responses are raw image bytes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from image_broker.backends.base import (
    BackendCapabilities,
    missing_credentials,
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

CLIPDROP_BASE_URL = "https://clipdrop-api.co"
CREDENTIAL_KEYS = ["CLIPDROP_API_KEY"]
DEFAULT_MODEL = "stable-diffusion-xl"

EDIT_ENDPOINTS = {
    "remove-background": "/remove-background/v1",
    "remove-object": "/cleanup/v1",
    "replace-background": "/replace-background/v1",
    "upscale": "/super-resolution/v1",
    "standard": "/image-editing/v1",
}

_EDIT_HINTS = (
    ("remove-background", ("remove background", "transparent")),
    ("remove-object", ("remove object", "erase", "delete")),
    ("replace-background", ("replace background", "change background")),
    ("upscale", ("upscale", "enhance", "higher resolution")),
)


def edit_type(prompt: str) -> str:
    """Edit endpoint key implied by the prompt wording."""
    lower = prompt.lower()
    for kind, hints in _EDIT_HINTS:
        if any(h in lower for h in hints):
            return kind
    return "standard"


class ClipdropBackend:
    """Clipdrop adapter."""

    name = "clipdrop"

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
            CLIPDROP_BASE_URL,
            headers={"x-api-key": self._api_key} if self._api_key else {},
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
            supported_models=(DEFAULT_MODEL,),
            default_model=DEFAULT_MODEL,
        )

    async def _post(self, path: str, form: dict[str, Any], files: dict[str, Any]) -> GeneratedImage:
        response = await self._http.request(
            "POST",
            path,
            data=form,
            files=files,
            headers={"Accept": "image/*"},
        )
        return GeneratedImage.from_bytes(response.content, response.headers.get("content-type"))

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)

        logger.debug("Clipdrop generate", backend=self.name, prompt=truncate_prompt(request.prompt))
        # Text-to-image takes the prompt as a multipart field
        image = await self._post("/text-to-image/v1", {}, {"prompt": (None, request.prompt)})
        return GenerationResult(images=(image,), backend=self.name, model=request.model or DEFAULT_MODEL)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)
        base = require_base_image(request)

        kind = edit_type(request.prompt)
        files: dict[str, Any] = {
            "image_file": ("image.png", base.data, base.media_type),
        }
        form: dict[str, Any] = {}
        if kind == "remove-object" and request.mask_image is not None:
            files["mask_file"] = ("mask.png", request.mask_image.data, request.mask_image.media_type)
        elif kind == "upscale":
            form["scale"] = "2"
        elif kind in ("replace-background", "standard"):
            form["prompt"] = request.prompt

        image = await self._post(EDIT_ENDPOINTS[kind], form, files)
        warnings: tuple[str, ...] = ()
        if kind == "remove-background":
            warnings = ("Background removed - image has transparency",)
        return GenerationResult(images=(image,), backend=self.name, model=f"clipdrop-{kind}", warnings=warnings)

    async def aclose(self) -> None:
        await self._http.close()
