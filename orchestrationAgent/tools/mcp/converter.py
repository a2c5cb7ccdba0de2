"""Conversion between MCP SDK objects and engine tool types."""

import json
from typing import Any, List

from orchestrationAgent.tools.base import ToolDefinition, ToolResult

from .naming import format_tool_id

EMPTY_SCHEMA = {"type": "object", "properties": {}}


def to_tool_definition(server_name: str, display_name: str, tool: Any) -> ToolDefinition:
    """Namespace an endpoint tool and tag its description with the endpoint name."""
    description = (getattr(tool, "description", None) or "").strip()
    prefix = f"[MCP: {display_name}]"
    return ToolDefinition(
        id=format_tool_id(server_name, tool.name),
        name=tool.name,
        description=f"{prefix} {description}" if description else prefix,
        parameters=getattr(tool, "inputSchema", None) or dict(EMPTY_SCHEMA),
        source="mcp",
    )


def _content_parts(result: Any) -> List[Any]:
    parts = []
    for item in getattr(result, "content", None) or []:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        elif hasattr(item, "model_dump"):
            parts.append(item.model_dump(exclude_none=True))
        else:
            parts.append(str(item))
    return parts


def convert_call_result(result: Any) -> ToolResult:
    """Map a ``CallToolResult`` to a ToolResult.

    Text parts are joined with newlines; a single text part holding JSON is
    decoded. Structured content wins when the endpoint provides it.
    """
    parts = _content_parts(result)
    texts = [part for part in parts if isinstance(part, str)]

    if getattr(result, "isError", False):
        return ToolResult.fail("\n".join(texts) or "MCP tool reported an error")

    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return ToolResult.ok(structured)

    if len(parts) == 1 and texts:
        try:
            return ToolResult.ok(json.loads(texts[0]))
        except ValueError:
            return ToolResult.ok(texts[0])

    if len(texts) == len(parts):
        return ToolResult.ok("\n".join(texts))

    return ToolResult.ok(parts)
