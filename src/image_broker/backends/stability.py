"""
Stability AI backend (Stable Image Core, SD3 image-to-image).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from image_broker.backends.base import (
    BackendCapabilities,
    aspect_ratio,
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

STABILITY_BASE_URL = "https://api.stability.ai"
CREDENTIAL_KEYS = ["STABILITY_API_KEY"]
ASPECT_RATIOS = ("1:1", "16:9", "9:16", "21:9", "9:21", "3:2", "2:3", "4:5", "5:4")
EDIT_STRENGTH = 0.7


class StabilityBackend:
    """Stability AI REST v2beta adapter.

    Responses are requested as raw image bytes (``Accept: image/*``).
    """

    name = "stability"

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
            STABILITY_BASE_URL,
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
            max_width=1536,
            max_height=1536,
            supported_models=("stable-image-core-v1", "sd3"),
            default_model="stable-image-core-v1",
        )

    def _form(self, request: GenerationRequest) -> dict[str, Any]:
        form: dict[str, Any] = {"prompt": request.prompt, "output_format": "png"}
        if request.width and request.height:
            form["aspect_ratio"] = aspect_ratio(request.width, request.height, ASPECT_RATIOS)
        if request.seed is not None:
            form["seed"] = str(request.seed)
        return form

    async def _post_image(self, path: str, form: dict[str, Any], files: dict[str, Any]) -> GeneratedImage:
        # A placeholder part forces multipart encoding when no file is sent
        response = await self._http.request(
            "POST",
            path,
            data=form,
            files=files or {"none": ("", b"")},
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

        model = pick_model(request, self.capabilities())
        logger.debug("Stability generate", backend=self.name, prompt=truncate_prompt(request.prompt))
        image = await self._post_image("/v2beta/stable-image/generate/core", self._form(request), {})
        return GenerationResult(images=(image,), backend=self.name, model=model)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)
        base = require_base_image(request)

        form = self._form(request)
        # aspect_ratio is taken from the input image in image-to-image mode
        form.pop("aspect_ratio", None)
        form["mode"] = "image-to-image"
        form["strength"] = str(EDIT_STRENGTH)
        files = {"image": ("image.png", base.data, base.media_type)}
        image = await self._post_image("/v2beta/stable-image/generate/sd3", form, files)
        return GenerationResult(images=(image,), backend=self.name, model="sd3")

    async def aclose(self) -> None:
        await self._http.close()
