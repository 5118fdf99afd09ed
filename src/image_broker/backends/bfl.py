"""
Black Forest Labs backend (FLUX 1.1 Pro family, FLUX Fill for edits).

Submissions return a task id which is polled on ``/v1/get_result``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from image_broker.backends.base import (
    BackendCapabilities,
    malformed_response,
    missing_credentials,
    read_credential,
    require_base_image,
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

BFL_BASE_URL = "https://api.bfl.ai"
CREDENTIAL_KEYS = ["BFL_API_KEY"]

MODEL_ENDPOINTS = {
    "flux1.1-pro": "/v1/flux-pro-1.1",
    "flux1.1-pro-ultra": "/v1/flux-pro-1.1-ultra",
    "flux1.1-pro-raw": "/v1/flux-pro-1.1-raw",
    "flux-kontext-pro": "/v1/flux-kontext",
    "flux-kontext-max": "/v1/flux-kontext-max",
    "flux-fill-pro": "/v1/flux-fill",
}
DEFAULT_MODEL = "flux1.1-pro"
FILL_MODEL = "flux-fill-pro"

_FAILED = {"Error", "Failed", "Content Moderated", "Request Moderated"}


def select_model(prompt: str, width: int | None, height: int | None) -> str:
    """Pick a FLUX variant from the prompt and requested size."""
    if width and height and (width > 1536 or height > 1536):
        return "flux1.1-pro-ultra"
    lower = prompt.lower()
    if any(k in lower for k in ("photo", "realistic", "candid")):
        return "flux1.1-pro-raw"
    if any(k in lower for k in ("edit", "compose", "combine")):
        return "flux-kontext-pro"
    return DEFAULT_MODEL


class BFLBackend:
    """BFL adapter.

    Args:
        config: Credential source (BFL_API_KEY)
        timeout: HTTP timeout in seconds
        http: Preconfigured HTTP client (tests)
        poll: Polling schedule; defaults to PollConfig.slow()
    """

    name = "bfl"

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
            BFL_BASE_URL,
            headers={"X-Key": self._api_key} if self._api_key else {},
            timeout=timeout,
        )
        self._tracker = CompletionTracker(poll or PollConfig.slow())

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
            supported_models=tuple(MODEL_ENDPOINTS),
            default_model=DEFAULT_MODEL,
        )

    async def _check(self, task_id: str) -> PollState[Any]:
        body = await self._http.get_json("/v1/get_result", params={"id": task_id})
        status = body.get("status") if isinstance(body, dict) else None
        if status == "Ready":
            return PollState.ready(task_id, body)
        if status in _FAILED:
            return PollState.failed(task_id, str(status), payload=body)
        return PollState.pending(task_id, body)

    async def _image_from(self, body: Any) -> GeneratedImage:
        result = body.get("result") if isinstance(body, dict) else None
        sample = (result or {}).get("sample") or (body or {}).get("sample")
        if not sample:
            raise malformed_response(self.name, "no image in response", body)
        if sample.startswith(("http://", "https://")):
            data, content_type = await self._http.download(sample)
            return GeneratedImage.from_bytes(data, content_type)
        return GeneratedImage.from_base64(sample, "image/png")

    async def _run(
        self,
        path: str,
        payload: dict[str, Any],
        cancel: CancelToken | None,
    ) -> GeneratedImage:
        submitted = await self._http.post_json(path, payload)
        if isinstance(submitted, dict) and submitted.get("sample"):
            return await self._image_from(submitted)
        task_id = submitted.get("id") if isinstance(submitted, dict) else None
        if not task_id:
            raise malformed_response(self.name, "task was not created", submitted)

        async def extract(state: PollState[Any]) -> GeneratedImage:
            return await self._image_from(state.payload)

        return await self._tracker.wait(
            task_id,
            check_status=self._check,
            extract_result=extract,
            cancel=cancel,
            backend=self.name,
        )

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        if not self.is_configured():
            raise missing_credentials(self.name, CREDENTIAL_KEYS)

        model = request.model or select_model(request.prompt, request.width, request.height)
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "width": request.width or 1024,
            "height": request.height or 1024,
            "steps": request.steps or (50 if "ultra" in model else 28),
            "guidance": request.guidance if request.guidance is not None else 3.5,
            "safety_tolerance": 2,
            "output_format": "png",
        }
        if request.seed is not None:
            payload["seed"] = request.seed

        logger.debug("BFL submit", backend=self.name, model=model, prompt=truncate_prompt(request.prompt))
        image = await self._run(MODEL_ENDPOINTS.get(model, MODEL_ENDPOINTS[DEFAULT_MODEL]), payload, cancel)
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

        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "image": base.to_base64(),
            "steps": request.steps or 28,
            "guidance": request.guidance if request.guidance is not None else 30,
            "output_format": "png",
        }
        if request.mask_image is not None:
            payload["mask"] = request.mask_image.to_base64()

        image = await self._run(MODEL_ENDPOINTS[FILL_MODEL], payload, cancel)
        return GenerationResult(images=(image,), backend=self.name, model=FILL_MODEL)

    async def aclose(self) -> None:
        await self._http.close()
