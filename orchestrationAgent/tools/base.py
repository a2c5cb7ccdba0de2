"""Tool definitions, results and the invoker contract shared by every tool source."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A tool as offered to a model.

    ``id`` is what the model calls and what the router routes on; remote tools
    carry a namespaced id while ``name`` keeps the endpoint's own tool name.
    """

    id: str
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    source: str = "local"

    def to_openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.id,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass(slots=True)
class ToolResult:
    """Uniform tool outcome; failures are data, never exceptions."""

    success: bool
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: Any) -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "output": self.output}
        return {"success": False, "error": self.error}


class ToolInvoker(Protocol):
    async def get_tools(self, principal: str, agent_type: Optional[str] = None) -> List[ToolDefinition]: ...

    async def invoke(self, principal: str, tool_id: str, input: Dict[str, Any]) -> ToolResult: ...

    async def has_permission(self, principal: str, tool_id: str) -> bool: ...
