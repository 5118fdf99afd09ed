"""
Cache key generation utilities.

Provides deterministic cache keys for generation and edit requests.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from image_broker.types.request import GenerationRequest


@dataclass(frozen=True)
class CacheKey:
    """A cache key with metadata.

    Attributes:
        key: The cache key string
        operation: 'generate' or 'edit'
        backend: Backend the result belongs to
        digest: Full SHA-256 of the normalized fields
    """

    key: str
    operation: str = "generate"
    backend: str = ""
    digest: str = ""

    def __str__(self) -> str:
        return self.key


class CacheKeyGenerator:
    """Generates deterministic cache keys for requests.

    Normalized fields: operation, whitespace-collapsed prompt, backend, width,
    height, model, seed, guidance, steps, and for edits a digest of the base
    image and mask bytes. Equal requests always produce equal keys.

    Example:
        >>> generator = CacheKeyGenerator()
        >>> key = generator.generate(GenerationRequest(prompt="a fox"), backend="openai")
        >>> key.key.startswith("img:generate:openai:")
        True
    """

    def __init__(self, prefix: str = "img", digest_chars: int = 32) -> None:
        """Initialize key generator.

        Args:
            prefix: Key prefix
            digest_chars: Number of hex digest characters kept in the key
        """
        self._prefix = prefix
        self._digest_chars = digest_chars

    def generate(
        self,
        request: GenerationRequest,
        backend: str,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> CacheKey:
        """Generate a cache key.

        Args:
            request: The request
            backend: Backend that will serve it
            width: Effective width, when defaults were applied
            height: Effective height, when defaults were applied

        Returns:
            CacheKey instance
        """
        backend = backend.lower()
        fields = self.normalize(request, backend, width=width, height=height)
        digest = self._hash_string(json.dumps(fields, sort_keys=True, ensure_ascii=True))
        key = ":".join([self._prefix, request.operation, backend, digest[: self._digest_chars]])
        return CacheKey(key=key, operation=request.operation, backend=backend, digest=digest)

    def normalize(
        self,
        request: GenerationRequest,
        backend: str,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> dict[str, Any]:
        """The semantically relevant request fields, normalized for hashing."""
        fields: dict[str, Any] = {
            "operation": request.operation,
            "prompt": " ".join(request.prompt.split()),
            "backend": backend,
            "width": width if width is not None else request.width,
            "height": height if height is not None else request.height,
            "model": request.model,
            "seed": request.seed,
            "guidance": request.guidance,
            "steps": request.steps,
        }
        if request.base_image is not None:
            fields["base_image"] = self._hash_bytes(request.base_image.data)
        if request.mask_image is not None:
            fields["mask_image"] = self._hash_bytes(request.mask_image.data)
        return fields

    def _hash_bytes(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def _hash_string(self, content: str) -> str:
        """Hash a string using SHA-256."""
        return hashlib.sha256(content.encode()).hexdigest()
