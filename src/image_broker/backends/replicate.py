"""
Replicate backend.

Predictions are created asynchronously and polled until they reach a terminal
state; the output URLs are then downloaded.
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

REPLICATE_BASE_URL = "https://api.replicate.com/v1"
CREDENTIAL_KEYS = ["REPLICATE_API_TOKEN"]

MODEL_VERSIONS = {
    "black-forest-labs/flux-schnell": "f2ab8a5bfe79f02f0789a146cf5e73d2a4ff2684a98c2b303d1e1ff3814271be",
    "black-forest-labs/flux-dev": "612251e5fdca5ca2813771a298f2c3d1c4a96e6ce957b180b6b77937beed5810",
    "stability-ai/sdxl": "7762fd07cf82c948538e41f63f77d685e02b063e37e496e96eefd46c929f9bdc",
    "lucataco/sdxl-lightning-4step": "727e49a643e999d602a896c774a0658ffefea21465756a6ce24b7ea4165eba6a",
}
DEFAULT_MODEL = "black-forest-labs/flux-schnell"

_FAILED = {"failed", "canceled"}


class ReplicateBackend:
    """Replicate predictions adapter (generation only).

    Args:
        config: Credential source (REPLICATE_API_TOKEN)
        timeout: HTTP timeout in seconds
        http: Preconfigured HTTP client (tests)
        poll: Polling schedule; defaults to PollConfig.standard()
    """

    name = "replicate"

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
            REPLICATE_BASE_URL,
            headers={"Authorization": f"Bearer {self._api_key}"} if self._api_key else {},
            timeout=timeout,
        )
        self._tracker = CompletionTracker(poll or PollConfig.standard())

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
            supported_models=tuple(MODEL_VERSIONS),
            default_model=DEFAULT_MODEL,
        )

    async def _check(self, prediction_id: str) -> PollState[Any]:
        body = await self._http.get_json(f"/predictions/{prediction_id}")
        status = body.get("status") if isinstance(body, dict) else None
        if status == "succeeded":
            return PollState.ready(prediction_id, body)
        if status in _FAILED:
            return PollState.failed(prediction_id, str(body.get("error") or status), payload=body)
        return PollState.pending(prediction_id, body)

    async def _download(self, state: PollState[Any]) -> tuple[GeneratedImage, ...]:
        output = state.payload.get("output") if isinstance(state.payload, dict) else None
        if isinstance(output, str):
            output = [output]
        if not output:
            raise malformed_response(self.name, "prediction succeeded without output", state.payload)
        images = []
        for url in output:
            data, content_type = await self._http.download(url)
            images.append(GeneratedImage.from_bytes(data, content_type))
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
        version = MODEL_VERSIONS.get(model, model)
        model_input: dict[str, Any] = {
            "prompt": request.prompt,
            "width": request.width or 1024,
            "height": request.height or 1024,
            "num_outputs": 1,
        }
        if request.seed is not None:
            model_input["seed"] = request.seed
        if request.guidance is not None:
            model_input["guidance_scale"] = request.guidance
        if request.steps is not None:
            model_input["num_inference_steps"] = request.steps

        logger.debug("Replicate submit", backend=self.name, model=model, prompt=truncate_prompt(request.prompt))
        created = await self._http.post_json("/predictions", {"version": version, "input": model_input})
        prediction_id = created.get("id") if isinstance(created, dict) else None
        if not prediction_id:
            raise malformed_response(self.name, "prediction was not created", created)

        images = await self._tracker.wait(
            prediction_id,
            check_status=self._check,
            extract_result=self._download,
            cancel=cancel,
            backend=self.name,
        )
        return GenerationResult(images=images, backend=self.name, model=model)

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        raise edit_not_supported(self.name)

    async def aclose(self) -> None:
        await self._http.close()
