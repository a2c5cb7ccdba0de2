"""Tool provider connection manager.

Owns one ManagedMCPClient per configured endpoint, aggregates their tool
catalogs under namespaced ids and routes invocations back to the owning
endpoint. Endpoints connect lazily on first use.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from orchestrationAgent.config.settings import MCPSettings
from orchestrationAgent.tools.base import ToolDefinition, ToolResult
from orchestrationAgent.utils.error_handler import UnknownToolError

from .client import ConnectionFactory, ManagedMCPClient, ServerStatus
from .config import ServerConfig
from .connection import create_connection
from .converter import convert_call_result, to_tool_definition
from .naming import normalize_server_name, parse_tool_id

LOGGER = logging.getLogger(__name__)


class MCPServerManager:
    """
    Manages remote tool provider endpoints.

    Features:
    - Lazy connection: endpoints connect on first listing or call
    - Graceful degradation: a failing endpoint is dropped from aggregation
    - Hot reload: refresh() applies added, changed and removed configs
    """

    def __init__(
        self,
        configs: Iterable[ServerConfig] = (),
        settings: Optional[MCPSettings] = None,
        connection_factory: ConnectionFactory = create_connection,
    ):
        self.settings = settings or MCPSettings()
        self._connection_factory = connection_factory
        self._clients: Dict[str, ManagedMCPClient] = {}   # server_id -> client
        self._by_name: Dict[str, str] = {}                # normalized name -> server_id

        self._state_handlers: List[Callable[[str, str, str], None]] = []
        self._error_handlers: List[Callable[[str, BaseException], None]] = []
        self._tools_handlers: List[Callable[[str, List[Any]], None]] = []

        for config in configs:
            self.add_server(config)

    # ========== event handlers ==========

    def on_connection_state_change(self, handler: Callable[[str, str, str], None]) -> None:
        self._state_handlers.append(handler)

    def on_error(self, handler: Callable[[str, BaseException], None]) -> None:
        self._error_handlers.append(handler)

    def on_tools_discovered(self, handler: Callable[[str, List[Any]], None]) -> None:
        self._tools_handlers.append(handler)

    def _dispatch(self, handlers: List[Callable], *args: Any) -> None:
        for handler in handlers:
            try:
                handler(*args)
            except Exception as e:
                LOGGER.warning(f"MCP event handler {handler!r} raised: {e}")

    # ========== registry ==========

    def _unique_name(self, config: ServerConfig) -> str:
        name = normalize_server_name(config.name)
        owner = self._by_name.get(name)
        if owner is not None and owner != config.id:
            suffixed = normalize_server_name(f"{name}_{config.id[:8]}")
            LOGGER.warning(f"MCP server name conflict for '{config.name}', using '{suffixed}'")
            return suffixed
        return name

    def add_server(self, config: ServerConfig) -> ManagedMCPClient:
        """Register an endpoint (disconnected until first use)."""
        if config.id in self._clients:
            raise ValueError(f"MCP server already registered: {config.id}")
        name = self._unique_name(config)
        client = ManagedMCPClient(
            config,
            normalized_name=name,
            settings=self.settings,
            connection_factory=self._connection_factory,
            on_state_change=lambda *args: self._dispatch(self._state_handlers, *args),
            on_error=lambda *args: self._dispatch(self._error_handlers, *args),
            on_tools_discovered=lambda *args: self._dispatch(self._tools_handlers, *args),
        )
        self._clients[config.id] = client
        self._by_name[name] = config.id
        LOGGER.debug(f"  Registered MCP server config: {config.id} as '{name}'")
        return client

    async def remove_server(self, server_id: str) -> None:
        client = self._clients.pop(server_id, None)
        if client is None:
            return
        self._by_name.pop(client.normalized_name, None)
        await client.close()
        LOGGER.info(f"Removed MCP server: {server_id}")

    async def refresh(self, configs: Iterable[ServerConfig]) -> None:
        """Apply a new configuration set; changed endpoints reconnect lazily."""
        desired = {config.id: config for config in configs}

        for server_id in list(self._clients):
            if server_id not in desired:
                await self.remove_server(server_id)

        for server_id, config in desired.items():
            existing = self._clients.get(server_id)
            if existing is None:
                self.add_server(config)
            elif existing.config != config:
                LOGGER.info(f"MCP server config changed: {server_id}")
                await self.remove_server(server_id)
                self.add_server(config)

    def get_client(self, server_id: str) -> Optional[ManagedMCPClient]:
        return self._clients.get(server_id)

    def get_client_by_name(self, normalized_name: str) -> Optional[ManagedMCPClient]:
        server_id = self._by_name.get(normalized_name)
        return self._clients.get(server_id) if server_id else None

    def list_servers(self) -> List[ServerConfig]:
        return [client.config for client in self._clients.values()]

    # ========== aggregation ==========

    async def _client_tools(self, client: ManagedMCPClient, force_refresh: bool) -> List[ToolDefinition]:
        tools = await client.list_tools(force_refresh=force_refresh)
        return [to_tool_definition(client.normalized_name, client.config.name, tool) for tool in tools]

    async def list_tool_definitions(self, force_refresh: bool = False) -> List[ToolDefinition]:
        """Aggregate tools from every enabled endpoint.

        Never raises for a single endpoint's failure: that endpoint's tools are
        omitted and the failure is logged.
        """
        clients = [
            client for client in self._clients.values()
            if client.config.enabled and client.state != "failed"
        ]
        clients.sort(key=lambda client: client.config.priority, reverse=True)

        results = await asyncio.gather(
            *(self._client_tools(client, force_refresh) for client in clients),
            return_exceptions=True,
        )

        definitions: List[ToolDefinition] = []
        for client, result in zip(clients, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                LOGGER.warning(f"Skipping tools from MCP server '{client.config.name}': {result}")
                continue
            definitions.extend(result)
        return definitions

    # ========== invocation ==========

    def resolve(self, tool_id: str):
        """Return (client, tool_name) for a namespaced id or raise UnknownToolError."""
        parsed = parse_tool_id(tool_id)
        if parsed is None:
            raise UnknownToolError(f"Invalid MCP tool id: {tool_id}")
        server_name, tool_name = parsed
        client = self.get_client_by_name(server_name)
        if client is None:
            raise UnknownToolError(f"Unknown MCP server '{server_name}' in tool id {tool_id}")
        if not client.config.enabled:
            raise UnknownToolError(f"MCP server '{client.config.name}' is disabled")
        return client, tool_name

    async def invoke_tool(self, tool_id: str, arguments: Dict[str, Any]) -> Any:
        """Forward a call to the owning endpoint and return the raw CallToolResult."""
        client, tool_name = self.resolve(tool_id)
        return await client.call_tool(tool_name, arguments)

    async def invoke_tool_as_result(self, tool_id: str, arguments: Dict[str, Any]) -> ToolResult:
        try:
            raw = await self.invoke_tool(tool_id, arguments)
        except Exception as e:
            return ToolResult.fail(str(e))
        return convert_call_result(raw)

    # ========== lifecycle ==========

    async def reconnect_server(self, server_id: str) -> None:
        client = self._clients.get(server_id)
        if client is None:
            raise UnknownToolError(f"Unknown MCP server: {server_id}")
        await client.reconnect()

    def get_all_status(self) -> List[ServerStatus]:
        return [client.status() for client in self._clients.values()]

    async def shutdown(self) -> None:
        """Close every endpoint; called when the application exits."""
        if not self._clients:
            return
        LOGGER.info(f"Shutting down {len(self._clients)} MCP server(s)...")
        for client in list(self._clients.values()):
            try:
                await client.close()
            except Exception as e:
                LOGGER.warning(f"  Error closing MCP server {client.server_id}: {e}")
