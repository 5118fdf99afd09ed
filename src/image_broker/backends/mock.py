"""
Mock backend for running without any credentials.

Always configured. Produces small, valid gradient PNGs whose colors are a
deterministic function of the prompt.
"""

from __future__ import annotations

import asyncio
import hashlib
import struct
import zlib
from typing import TYPE_CHECKING

from image_broker.backends.base import BackendCapabilities, require_base_image
from image_broker.errors import ValidationError
from image_broker.types.image import GeneratedImage
from image_broker.types.result import GenerationResult

if TYPE_CHECKING:
    from image_broker.config.source import ConfigSource
    from image_broker.resilience.cancel import CancelToken
    from image_broker.types.request import GenerationRequest

MOCK_MAX_SIZE = 256
MOCK_MODEL = "mock-v1"


def _png_chunk(kind: bytes, payload: bytes) -> bytes:
    crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
    return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)


def gradient_png(width: int, height: int, seed_text: str, *, inverted: bool = False) -> bytes:
    """Encode an RGB gradient PNG whose colors derive from ``seed_text``."""
    digest = hashlib.sha256(seed_text.encode("utf-8")).digest()
    r1, g1, b1 = digest[0], digest[1], digest[2]
    if inverted:
        r2, g2, b2 = 255 - r1, 255 - g1, 255 - b1
    else:
        r2, g2, b2 = (r1 + 128) % 256, (g1 + 128) % 256, (b1 + 128) % 256

    span = max(width + height - 2, 1)
    rows = bytearray()
    for y in range(height):
        rows.append(0)  # filter: none
        for x in range(width):
            t = (x + y) / span
            rows.extend(
                (
                    int(r1 * (1 - t) + r2 * t),
                    int(g1 * (1 - t) + g2 * t),
                    int(b1 * (1 - t) + b2 * t),
                )
            )

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"".join(
        (
            b"\x89PNG\r\n\x1a\n",
            _png_chunk(b"IHDR", header),
            _png_chunk(b"IDAT", zlib.compress(bytes(rows), 9)),
            _png_chunk(b"IEND", b""),
        )
    )


class MockBackend:
    """Credential-free backend returning deterministic placeholder images.

    Args:
        config: Unused; accepted for factory compatibility
        timeout: Unused
        latency: Artificial delay per call, in seconds
    """

    name = "mock"

    def __init__(
        self,
        config: ConfigSource | None = None,
        *,
        timeout: float = 0.0,
        latency: float = 0.0,
    ) -> None:
        self._latency = latency

    def is_configured(self) -> bool:
        return True

    def required_credentials(self) -> list[str]:
        return []

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=MOCK_MAX_SIZE,
            max_height=MOCK_MAX_SIZE,
            supported_models=(MOCK_MODEL,),
            default_model=MOCK_MODEL,
        )

    async def _pause(self, cancel: CancelToken | None) -> None:
        if self._latency <= 0:
            return
        if cancel is not None:
            await cancel.sleep(self._latency)
        else:
            await asyncio.sleep(self._latency)

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        width = request.width or MOCK_MAX_SIZE
        height = request.height or MOCK_MAX_SIZE
        for field_name, value in (("width", width), ("height", height)):
            if value > MOCK_MAX_SIZE:
                raise ValidationError(
                    f"mock backend supports at most {MOCK_MAX_SIZE}px, got {field_name}={value}",
                    field=field_name,
                    expected=f"<= {MOCK_MAX_SIZE}",
                    actual=value,
                )
        await self._pause(cancel)

        warnings = ("This is a mock image for testing. Configure a real backend for actual generation.",)

        seed_text = f"{request.prompt}|{request.seed}"
        return GenerationResult(
            images=(GeneratedImage(data=gradient_png(width, height, seed_text), format="png"),),
            backend=self.name,
            model=MOCK_MODEL,
            warnings=warnings,
        )

    async def edit(
        self,
        request: GenerationRequest,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerationResult:
        require_base_image(request)
        await self._pause(cancel)
        png = gradient_png(MOCK_MAX_SIZE, MOCK_MAX_SIZE, request.prompt, inverted=True)
        return GenerationResult(
            images=(GeneratedImage(data=png, format="png"),),
            backend=self.name,
            model=MOCK_MODEL,
            warnings=("This is a mock edited image for testing. Configure a real backend for actual editing.",),
        )

    async def aclose(self) -> None:
        return None
