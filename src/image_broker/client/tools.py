"""工具调用边界：将工具调用参数映射到代理调用并返回结构化结果。

Tool-call boundary.

Maps tool invocations (``health.ping``, ``config.providers``,
``image.generate``, ``image.edit``) onto broker calls and converts results and
broker errors into plain JSON-compatible payloads. No transport is included;
a server layer passes decoded arguments in and serializes the return value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from image_broker.errors import BrokerError, ValidationError
from image_broker.telemetry.logger import get_logger
from image_broker.types.request import GenerationRequest

if TYPE_CHECKING:
    from image_broker.client.core import ImageBroker

logger = get_logger(__name__)

_DIMENSION = {"type": "integer", "minimum": 64, "maximum": 4096}

_GENERATE_PROPERTIES: dict[str, Any] = {
    "prompt": {"type": "string", "minLength": 1, "maxLength": 4000},
    "backendName": {"type": "string", "default": "auto"},
    "width": _DIMENSION,
    "height": _DIMENSION,
    "model": {"type": "string"},
    "seed": {"type": "integer", "minimum": 0},
    "guidance": {"type": "number", "minimum": 0, "maximum": 30},
    "steps": {"type": "integer", "minimum": 1, "maximum": 150},
}

_IMAGE_REFERENCE = {
    "type": "string",
    "description": "Data URL (data:image/png;base64,...), file path or file:// URL",
}


@dataclass
class ToolDefinition:
    """A tool as advertised to the tool-invocation layer."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        "health.ping",
        "Check if the server is running",
        {"type": "object", "properties": {}},
    ),
    ToolDefinition(
        "config.providers",
        "List available providers and their configuration status",
        {"type": "object", "properties": {}},
    ),
    ToolDefinition(
        "image.generate",
        "Generate an image from a text prompt",
        {"type": "object", "properties": _GENERATE_PROPERTIES, "required": ["prompt"]},
    ),
    ToolDefinition(
        "image.edit",
        "Edit an existing image with a text prompt",
        {
            "type": "object",
            "properties": {
                **_GENERATE_PROPERTIES,
                "baseImage": _IMAGE_REFERENCE,
                "maskImage": _IMAGE_REFERENCE,
            },
            "required": ["prompt", "baseImage"],
        },
    ),
)


def error_payload(error: BrokerError) -> dict[str, Any]:
    """Structured error returned across the boundary."""
    return {"error": error.to_dict()}


class ToolHandlers:
    """Handlers for the broker's tools.

    Example:
        >>> tools = ToolHandlers(broker)
        >>> await tools.call("image.generate", {"prompt": "quick draft sketch"})
        {'images': [{'data': 'iVBORw0...', 'format': 'png'}], 'backend': 'fal', 'model': 'fast-sdxl'}
    """

    def __init__(self, broker: ImageBroker) -> None:
        self._broker = broker
        self._handlers = {
            "health.ping": lambda args: self.ping(),
            "config.providers": lambda args: self.providers(),
            "image.generate": self.generate,
            "image.edit": self.edit,
        }

    @staticmethod
    def definitions() -> list[dict[str, Any]]:
        """Tool definitions for a ``tools/list`` response."""
        return [tool.to_dict() for tool in TOOL_DEFINITIONS]

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Invoke a tool by name.

        Unknown tool names produce a validation error payload.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return error_payload(ValidationError(f"Unknown tool: {name}", field="name"))
        result = handler(arguments or {})
        if hasattr(result, "__await__"):
            result = await result
        return result

    def ping(self) -> str:
        return "ok"

    def providers(self) -> list[dict[str, Any]]:
        return self._broker.status()

    async def generate(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run ``image.generate``; broker errors come back as ``{"error": ...}``."""
        try:
            request = GenerationRequest.from_arguments(arguments)
            if request.is_edit:
                raise ValidationError("image.generate does not take a base image", field="baseImage")
            result = await self._broker.generate(request)
        except BrokerError as e:
            logger.warning("image.generate failed", kind=e.kind, retryable=e.retryable)
            return error_payload(e)
        return result.to_dict()

    async def edit(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run ``image.edit``; broker errors come back as ``{"error": ...}``."""
        try:
            request = GenerationRequest.from_arguments(arguments)
            result = await self._broker.edit(request)
        except BrokerError as e:
            logger.warning("image.edit failed", kind=e.kind, retryable=e.retryable)
            return error_payload(e)
        return result.to_dict()
