"""
Fal.ai backend (queue API, very fast SDXL and FLUX models).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from image_broker.backends.base import (
    BackendCapabilities,
    edit_not_supported,
    malformed_response,
    missing_credentials,
    pick_model,
    read_credential,
)
from image_broker.backends.http import BackendHttpClient
from image_broker.completion import CompletionTracker, PollConfig, PollState
from image_broker.telemetry.logger import get_logger, truncate_prompt
from image_broker.types.image import GeneratedImage
from image_broker.types.result import GenerationResult

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.request import GenerationRequest

logger = get_logger(__name__)

FAL_BASE_URL = "https://queue.fal.run"
CREDENTIAL_KEYS = ["FAL_KEY", "FAL_API_KEY"]
DEFAULT_MODEL = "fast-sdxl"

MODEL_ENDPOINTS = {
    "fast-sdxl": "fal-ai/fast-sdxl",
    "fast-lightning-sdxl": "fal-ai/fast-lightning-sdxl",
    "flux-pro": "fal-ai/flux-pro",
    "flux-realism": "fal-ai/flux-realism",
    "stable-diffusion-v3": "fal-ai/stable-diffusion-v3-medium",
    "animagine-xl": "fal-ai/animagine-xl-v31",
    "playground-v2": "fal-ai/playground-v25",
    "realvisxl-v4": "fal-ai/realvisxl-v4",
}


def preset_size(width: int | None, height: int | None) -> str:
    """Map dimensions to the closest SDXL size preset."""
    ratio = (width or 1024) / (height or 1024)
    if ratio > 1.7:
        return "landscape_16_9"
    if ratio > 1.3:
        return "landscape_4_3"
    if ratio < 0.6:
        return "portrait_16_9"
    if ratio < 0.8:
        return "portrait_4_3"
    return "square_hd"


class FalBackend:
    """Fal.ai queue adapter (generation only).

    Args:
        config: Credential source (FAL_KEY or FAL_API_KEY)
        timeout: HTTP timeout in seconds
        http: Preconfigured HTTP client (tests)
        poll: Polling schedule; defaults to PollConfig.fast()
    """

    name = "fal"

    def __init__(
        self,
        config: ConfigSource,
        *,
        timeout: float = 120.0,
        http: BackendHttpClient | None = None,
        poll: PollConfig | None = None,
    ) -> None:
        self._api_key = read_credential(config, *CREDENTIAL_KEYS)
        self._http = http or BackendHttpClient(
            self.name,
            FAL_BASE_URL,
            headers={"Authorization": f"Key {self._api_key}"} if self._api_key else {},
            timeout=timeout,
        )
        self._tracker = CompletionTracker(poll or PollConfig.fast())

    def is_configured(self) -> bool:
        return self._api_key is not None

    def required_credentials(self) -> list[str]:
        return list(CREDENTIAL_KEYS)

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=False,
            max_width=1536,
            max_height=1536,
            supported_models=tuple(MODEL_ENDPOINTS),
            default_model=DEFAULT_MODEL,
        )

    def _body(self, request: GenerationRequest, endpoint: str) -> dict[str, Any]:
        fast = "fast" in endpoint
        steps = request.steps or (4 if fast else 25)
        body: dict[str, Any] = {
            "prompt": request.prompt,
            "num_inference_steps": min(steps, 8) if fast else steps,
            "guidance_scale": request.guidance if request.guidance is not None else 3.5,
            "num_images": 1,
            "enable_safety_checker": True,
            "format": "png",
        }
        if "flux" in endpoint:
            body["image_size"] = {"width": request.width or 1024, "height": request.height or 1024}
        else:
            body["image_size"] = preset_size(request.width, request.height)
        if request.seed is not None:
            body["seed"] = request.seed
        return body

    async def _images(self, result: Any) -> tuple[tuple[GeneratedImage, ...], tuple[str, ...]]:
        entries = result.get("images") if isinstance(result, dict) else None
        if not entries:
            raise malformed_response(self.name, "no images returned", result)
        images = []
        for entry in entries:
            url = entry.get("url") if isinstance(entry, dict) else entry
            if url.startswith("data:"):
                images.append(GeneratedImage.from_base64(url))
                continue
            data, content_type = await self._http.download(url)
            images.append(GeneratedImage.from_bytes(data, content_type))

        warnings: tuple[str, ...] = ()
        nsfw = result.get("has_nsfw_concepts")
        if nsfw and nsfw[0]:
            warnings = ("Content may be NSFW",)
        return tuple(images), warnings

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)

        model = pick_model(request, self.capabilities())
        endpoint = MODEL_ENDPOINTS.get(model, model)
        logger.debug("Fal submit", backend=self.name, model=model, prompt=truncate_prompt(request.prompt))
        submitted = await self._http.post_json(f"/{endpoint}", self._body(request, endpoint))

        if isinstance(submitted, dict) and submitted.get("images"):
            result = submitted
        else:
            request_id = submitted.get("request_id") if isinstance(submitted, dict) else None
            if not request_id:
                raise malformed_response(self.name, "unexpected queue response", submitted)

            async def check(handle: str) -> PollState[Any]:
                body = await self._http.get_json(f"/{endpoint}/requests/{handle}/status")
                status = body.get("status") if isinstance(body, dict) else None
                if status == "COMPLETED":
                    return PollState.ready(handle, body)
                if status in ("FAILED", "ERROR"):
                    return PollState.failed(handle, str(body.get("error") or status), retryable=True, payload=body)
                return PollState.pending(handle, body)

            async def fetch(state: PollState[Any]) -> Any:
                return await self._http.get_json(f"/{endpoint}/requests/{state.handle}")

            result = await self._tracker.wait(
                request_id,
                check_status=check,
                extract_result=fetch,
                cancel=cancel,
                backend=self.name,
            )

        images, warnings = await self._images(result)
        return GenerationResult(images=images, backend=self.name, model=model, warnings=warnings)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        raise edit_not_supported(self.name)

    async def aclose(self) -> None:
        await self._http.close()
