"""Composite tool router over the local registry and remote endpoints.

Routing is syntactic: ids containing the namespace separator go to the MCP
manager, everything else to the local registry. Every failure comes back as
a ``ToolResult`` so callers never deal with tool origin.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from orchestrationAgent.tools.base import ToolDefinition, ToolResult
from orchestrationAgent.tools.mcp.manager import MCPServerManager
from orchestrationAgent.tools.mcp.naming import is_remote_tool_id
from orchestrationAgent.tools.registry import LocalToolRegistry
from orchestrationAgent.utils.logging_utils import log_tool_call, log_tool_result

LOGGER = logging.getLogger(__name__)

REMOTE_ERROR_PREFIX = "MCP tool error: "


class CompositeToolRouter:
    def __init__(self, local: LocalToolRegistry, remote: Optional[MCPServerManager] = None):
        self.local = local
        self.remote = remote

    async def get_tools(self, principal: str, agent_type: Optional[str] = None) -> List[ToolDefinition]:
        tools: List[ToolDefinition] = []
        try:
            tools.extend(await self.local.get_tools(principal, agent_type))
        except Exception as e:
            LOGGER.warning(f"Local tool listing failed: {e}")

        if self.remote is not None:
            try:
                tools.extend(await self.remote.list_tool_definitions())
            except Exception as e:
                LOGGER.warning(f"Remote tool listing failed: {e}")
        return tools

    async def has_permission(self, principal: str, tool_id: str) -> bool:
        if is_remote_tool_id(tool_id):
            if self.remote is None:
                return False
            try:
                self.remote.resolve(tool_id)
            except Exception:
                return False
            return True
        return await self.local.has_permission(principal, tool_id)

    async def invoke(self, principal: str, tool_id: str, input: Dict[str, Any]) -> ToolResult:
        log_tool_call(LOGGER, tool_id, input)
        if is_remote_tool_id(tool_id):
            result = await self._invoke_remote(tool_id, input)
        else:
            result = await self._invoke_local(principal, tool_id, input)
        log_tool_result(LOGGER, tool_id, result.output if result.success else result.error, result.success)
        return result

    async def _invoke_remote(self, tool_id: str, input: Dict[str, Any]) -> ToolResult:
        if self.remote is None:
            return ToolResult.fail(f"{REMOTE_ERROR_PREFIX}no remote tool providers configured")
        try:
            result = await self.remote.invoke_tool_as_result(tool_id, input)
        except Exception as e:
            return ToolResult.fail(f"{REMOTE_ERROR_PREFIX}{e}")
        if not result.success and not (result.error or "").startswith(REMOTE_ERROR_PREFIX):
            result = ToolResult.fail(f"{REMOTE_ERROR_PREFIX}{result.error}")
        return result

    async def _invoke_local(self, principal: str, tool_id: str, input: Dict[str, Any]) -> ToolResult:
        try:
            return await self.local.invoke(principal, tool_id, input)
        except Exception as e:
            return ToolResult.fail(str(e) or type(e).__name__)
