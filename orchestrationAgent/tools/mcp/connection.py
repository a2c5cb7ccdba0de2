"""MCP transport connections (stdio, SSE and streamable HTTP)."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from .config import ServerConfig

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerInfo:
    name: str
    version: str = ""
    protocol_version: str = ""


class MCPConnection(ABC):
    """One live session with an endpoint.

    Subclasses only open the transport streams; the session handshake, tool
    listing and invocation are shared.
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None

    @abstractmethod
    async def _open_streams(self, stack: AsyncExitStack):
        """Enter the transport context on ``stack`` and return (read, write)."""

    @property
    def is_open(self) -> bool:
        return self._session is not None

    async def open(self) -> ServerInfo:
        """Open the transport and perform the MCP handshake."""
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await self._open_streams(stack)
            timeout = self.config.request_timeout
            session = await stack.enter_async_context(ClientSession(
                read_stream,
                write_stream,
                read_timeout_seconds=timedelta(seconds=timeout) if timeout else None,
            ))
            result = await session.initialize()
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._session = session
        LOGGER.debug(f"  Connection established for server: {self.config.id}")
        return ServerInfo(
            name=result.serverInfo.name,
            version=result.serverInfo.version or "",
            protocol_version=str(result.protocolVersion),
        )

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"Server not connected: {self.config.id}")
        return self._session

    async def list_tools(self) -> List[Any]:
        result = await self._require_session().list_tools()
        return list(result.tools)

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        return await self._require_session().call_tool(tool_name, arguments)

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            try:
                await stack.aclose()
            except Exception as e:
                LOGGER.warning(f"  Error closing connection for {self.config.id}: {e}")
        LOGGER.debug(f"  Closed connection for server: {self.config.id}")


class StdioMCPConnection(MCPConnection):
    """Spawns the server process and talks over stdin/stdout."""

    async def _open_streams(self, stack: AsyncExitStack):
        full_env = os.environ.copy()
        full_env.update(self.config.resolved_env())

        LOGGER.debug(f"  Starting stdio server: {self.config.command} {' '.join(self.config.args)}")
        params = StdioServerParameters(
            command=self.config.command,
            args=self.config.args,
            env=full_env,
            cwd=self.config.cwd,
        )
        return await stack.enter_async_context(stdio_client(params))


class SSEMCPConnection(MCPConnection):
    """HTTP + Server-Sent Events transport."""

    async def _open_streams(self, stack: AsyncExitStack):
        return await stack.enter_async_context(sse_client(
            self.config.url,
            headers=self.config.auth.resolve_headers() or None,
            timeout=self.config.connect_timeout or 30,
        ))


class StreamableHttpMCPConnection(MCPConnection):
    """Streamable HTTP transport."""

    async def _open_streams(self, stack: AsyncExitStack):
        read_stream, write_stream, _get_session_id = await stack.enter_async_context(streamablehttp_client(
            self.config.url,
            headers=self.config.auth.resolve_headers() or None,
            timeout=self.config.connect_timeout or 30,
        ))
        return read_stream, write_stream


def create_connection(config: ServerConfig) -> MCPConnection:
    """Factory function to create the connection type for a config."""
    if config.transport == "stdio":
        return StdioMCPConnection(config)
    if config.transport == "sse":
        return SSEMCPConnection(config)
    if config.transport == "streamable_http":
        return StreamableHttpMCPConnection(config)
    raise ValueError(f"Unknown transport: {config.transport}")
