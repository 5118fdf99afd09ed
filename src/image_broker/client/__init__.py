"""
Client layer - User-facing API.

This module provides:
- ImageBroker: Main entry point for generation and editing
- ImageBrokerBuilder: Fluent construction of a broker
- ToolHandlers: Tool-call boundary mapping arguments to broker calls
"""

from image_broker.client.builder import ImageBrokerBuilder
from image_broker.client.core import ImageBroker
from image_broker.client.tools import TOOL_DEFINITIONS, ToolDefinition, ToolHandlers, error_payload

__all__ = [
    "ImageBroker",
    "ImageBrokerBuilder",
    "TOOL_DEFINITIONS",
    "ToolDefinition",
    "ToolHandlers",
    "error_payload",
]
