"""Local in-process tool catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool

from orchestrationAgent.tools.base import ToolDefinition, ToolResult
from orchestrationAgent.utils.error_handler import tool_error_boundary

LOGGER = logging.getLogger(__name__)

PermissionChecker = Callable[[str, str], bool]


@dataclass(frozen=True, slots=True)
class ToolMeta:
    """Governance attributes for a local tool.

    ``agent_types`` limits visibility to the listed agent types; None means
    every agent type may see the tool.
    """

    name: str
    risk: str = "low"
    tags: FrozenSet[str] = frozenset()
    agent_types: Optional[FrozenSet[str]] = None


class LocalToolRegistry:
    """Tracks LangChain tool instances and their governance metadata."""

    def __init__(
        self,
        tools: Optional[Iterable[BaseTool]] = None,
        meta: Optional[Iterable[ToolMeta]] = None,
        permission_checker: Optional[PermissionChecker] = None,
    ) -> None:
        self._tools: Dict[str, BaseTool] = {}
        self._meta: Dict[str, ToolMeta] = {}
        self._permission_checker = permission_checker
        for tool in tools or []:
            self.register_tool(tool)
        for item in meta or []:
            self.register_meta(item)

    def register_tool(self, tool: BaseTool, meta: Optional[ToolMeta] = None) -> None:
        self._tools[tool.name] = tool
        if meta is not None:
            self.register_meta(meta)

    def register_meta(self, metadata: ToolMeta) -> None:
        self._meta[metadata.name] = metadata

    def get_tool(self, name: str) -> BaseTool:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}")
        return self._tools[name]

    def get_meta(self, name: str) -> ToolMeta:
        return self._meta.get(name) or ToolMeta(name=name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[BaseTool]:
        return list(self._tools.values())

    @staticmethod
    def to_definition(tool: BaseTool) -> ToolDefinition:
        function = convert_to_openai_tool(tool)["function"]
        return ToolDefinition(
            id=tool.name,
            name=tool.name,
            description=function.get("description", tool.description or ""),
            parameters=function.get("parameters") or {"type": "object", "properties": {}},
            source="local",
        )

    def _visible_to(self, name: str, agent_type: Optional[str]) -> bool:
        allowed = self.get_meta(name).agent_types
        return agent_type is None or allowed is None or agent_type in allowed

    async def get_tools(self, principal: str, agent_type: Optional[str] = None) -> List[ToolDefinition]:
        return [
            self.to_definition(tool)
            for name, tool in self._tools.items()
            if self._visible_to(name, agent_type) and await self.has_permission(principal, name)
        ]

    async def has_permission(self, principal: str, tool_id: str) -> bool:
        if tool_id not in self._tools:
            return False
        if self._permission_checker is None:
            return True
        return bool(self._permission_checker(principal, tool_id))

    async def invoke(self, principal: str, tool_id: str, input: Dict[str, Any]) -> ToolResult:
        if tool_id not in self._tools:
            return ToolResult.fail(f"Unknown tool: {tool_id}")
        if not await self.has_permission(principal, tool_id):
            return ToolResult.fail(f"Permission denied for tool: {tool_id}")

        tool = self._tools[tool_id]

        @tool_error_boundary(tool_id)
        async def _run() -> Any:
            return await tool.ainvoke(input)

        return await _run()
