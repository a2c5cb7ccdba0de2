"""Tool catalogs and routing."""

from .base import ToolDefinition, ToolInvoker, ToolResult
from .composite import CompositeToolRouter
from .registry import LocalToolRegistry, ToolMeta

__all__ = [
    "CompositeToolRouter",
    "LocalToolRegistry",
    "ToolDefinition",
    "ToolInvoker",
    "ToolMeta",
    "ToolResult",
]
