"""Managed connection to one remote tool provider endpoint.

Lazy connect, tool-catalog cache with TTL, request metrics, and bounded
exponential-backoff reconnection. Once the retry budget is spent the client
stays ``failed`` until ``reconnect()`` is called explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

import anyio
import httpx
from mcp.shared.exceptions import McpError

from orchestrationAgent.config.settings import MCPSettings
from orchestrationAgent.state.models import utcnow
from orchestrationAgent.utils.error_handler import (
    ServerConnectionError,
    ServerUnavailableError,
    ToolExecutionError,
)

from .config import ServerConfig
from .connection import MCPConnection, ServerInfo, create_connection

LOGGER = logging.getLogger(__name__)

ConnectionState = Literal["disconnected", "connecting", "connected", "reconnecting", "failed"]

ConnectionFactory = Callable[[ServerConfig], MCPConnection]
StateListener = Callable[[str, str, str], None]
ErrorListener = Callable[[str, BaseException], None]
ToolsListener = Callable[[str, List[Any]], None]

_CONNECTION_KEYWORDS = ("connection", "network", "socket", "econnrefused", "etimedout", "refused", "timed out", "broken pipe")


def is_connection_error(error: BaseException) -> bool:
    """Whether a request failure means the transport itself is unusable."""
    if isinstance(error, McpError):
        return False
    if isinstance(error, (
        OSError,
        asyncio.TimeoutError,
        anyio.ClosedResourceError,
        anyio.BrokenResourceError,
        anyio.EndOfStream,
        httpx.TransportError,
    )):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in _CONNECTION_KEYWORDS)


@dataclass
class ConnectionMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    consecutive_failures: int = 0
    latency_sum_ms: float = 0.0
    last_connected_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def average_latency_ms(self) -> float:
        if not self.successful_requests:
            return 0.0
        return self.latency_sum_ms / self.successful_requests


@dataclass(frozen=True)
class ServerStatus:
    server_id: str
    name: str
    normalized_name: str
    transport: str
    state: ConnectionState
    enabled: bool
    tool_count: int
    reconnect_attempts: int
    server_info: Optional[ServerInfo] = None
    metrics: ConnectionMetrics = field(default_factory=ConnectionMetrics)


class ManagedMCPClient:
    """Connection record plus state machine for one endpoint.

    Args:
        config: Endpoint configuration
        normalized_name: Namespace used in tool ids
        settings: Defaults for timeouts, retries, backoff and cache TTL
        connection_factory: Builds a transport connection for a config
    """

    def __init__(
        self,
        config: ServerConfig,
        normalized_name: str,
        settings: Optional[MCPSettings] = None,
        connection_factory: ConnectionFactory = create_connection,
        on_state_change: Optional[StateListener] = None,
        on_error: Optional[ErrorListener] = None,
        on_tools_discovered: Optional[ToolsListener] = None,
    ):
        self.config = config
        self.normalized_name = normalized_name
        self.settings = settings or MCPSettings()
        self._connection_factory = connection_factory
        self._on_state_change = on_state_change
        self._on_error = on_error
        self._on_tools_discovered = on_tools_discovered

        self._state: ConnectionState = "disconnected"
        self._connection: Optional[MCPConnection] = None
        self._server_info: Optional[ServerInfo] = None
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._closing = False

        self._tools_cache: Optional[List[Any]] = None
        self._tools_fetched_at = 0.0

        self.metrics = ConnectionMetrics()

    # ========== configuration ==========

    @property
    def server_id(self) -> str:
        return self.config.id

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self._server_info

    @property
    def max_retries(self) -> int:
        if self.config.max_retries is not None:
            return self.config.max_retries
        return self.settings.default_max_retries

    @property
    def connect_timeout(self) -> float:
        return self.config.connect_timeout or self.settings.connect_timeout

    @property
    def request_timeout(self) -> float:
        return self.config.request_timeout or self.settings.request_timeout

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff before reconnect attempt ``attempt`` (1-based)."""
        delay = self.settings.reconnect_base_delay * (2 ** (max(attempt, 1) - 1))
        return min(delay, self.settings.reconnect_max_delay)

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state, self._state = self._state, new_state
        if old_state == new_state:
            return
        LOGGER.info(f"MCP server {self.server_id}: {old_state} -> {new_state}")
        if self._on_state_change:
            self._on_state_change(self.server_id, old_state, new_state)

    def _record_failure(self, error: BaseException) -> None:
        self.metrics.failed_requests += 1
        self.metrics.consecutive_failures += 1
        self.metrics.last_error = str(error) or type(error).__name__
        self.metrics.last_error_at = utcnow()
        if self._on_error:
            self._on_error(self.server_id, error)

    # ========== connection lifecycle ==========

    async def ensure_connected(self) -> None:
        if self._state == "connected":
            return
        if self._state == "failed":
            raise ServerUnavailableError(
                f"MCP server '{self.config.name}' failed after {self._reconnect_attempts} reconnect attempts",
                user_message=f"Tool provider '{self.config.name}' is unavailable",
            )
        if self._state == "reconnecting":
            raise ServerConnectionError(f"MCP server '{self.config.name}' is reconnecting")
        await self.connect()

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._state == "connected":
                return
            if self._state == "failed":
                raise ServerUnavailableError(f"MCP server '{self.config.name}' is in failed state")
            await self._connect_locked()

    async def _connect_locked(self) -> None:
        self._set_state("connecting")
        connection = self._connection_factory(self.config)
        try:
            info = await asyncio.wait_for(connection.open(), timeout=self.connect_timeout)
        except Exception as e:
            await connection.close()
            self._record_failure(e)
            LOGGER.warning(f"MCP server {self.server_id} connect failed: {e}")
            self._handle_connection_failure()
            raise ServerConnectionError(f"Failed to connect to MCP server '{self.config.name}': {e}") from e

        self._connection = connection
        self._server_info = info
        self._reconnect_attempts = 0
        self.metrics.consecutive_failures = 0
        self.metrics.last_connected_at = utcnow()
        self._tools_cache = None
        self._set_state("connected")

    async def _drop_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()

    def _handle_connection_failure(self) -> None:
        if self._closing:
            self._set_state("disconnected")
            return
        if self._reconnect_attempts >= self.max_retries:
            LOGGER.error(
                f"MCP server {self.server_id} exhausted {self.max_retries} reconnect attempts; marking failed"
            )
            self._set_state("failed")
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_attempts += 1
        delay = self.reconnect_delay(self._reconnect_attempts)
        self._set_state("reconnecting")
        LOGGER.info(
            f"MCP server {self.server_id}: reconnect attempt {self._reconnect_attempts}/{self.max_retries} in {delay:.1f}s"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        async with self._connect_lock:
            if self._state != "reconnecting":
                return
            await self._drop_connection()
            try:
                await self._connect_locked()
            except ServerConnectionError:
                # Already recorded; the next attempt (or failed state) is set
                pass

    async def reconnect(self) -> None:
        """Explicit reconnect; resets the retry budget, including from ``failed``."""
        self._cancel_reconnect_task()
        async with self._connect_lock:
            self._reconnect_attempts = 0
            await self._drop_connection()
            self._set_state("disconnected")
            await self._connect_locked()

    def _cancel_reconnect_task(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()

    async def disconnect(self) -> None:
        self._cancel_reconnect_task()
        async with self._connect_lock:
            await self._drop_connection()
            self._set_state("disconnected")

    async def close(self) -> None:
        self._closing = True
        await self.disconnect()

    # ========== requests ==========

    async def _request(self, operation: str, call: Callable[[MCPConnection], Awaitable[Any]]) -> Any:
        await self.ensure_connected()
        connection = self._connection
        self.metrics.total_requests += 1
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(call(connection), timeout=self.request_timeout)
        except Exception as e:
            self._record_failure(e)
            if is_connection_error(e):
                LOGGER.warning(f"MCP server {self.server_id} {operation} failed (connection): {e}")
                self._handle_connection_failure()
                raise ServerConnectionError(f"MCP server '{self.config.name}' {operation} failed: {e}") from e
            raise ToolExecutionError(f"MCP server '{self.config.name}' {operation} failed: {e}") from e

        self.metrics.successful_requests += 1
        self.metrics.consecutive_failures = 0
        self.metrics.latency_sum_ms += (time.monotonic() - started) * 1000
        return result

    def _cache_valid(self) -> bool:
        if self._tools_cache is None:
            return False
        return (time.monotonic() - self._tools_fetched_at) < self.settings.tool_cache_ttl

    async def list_tools(self, force_refresh: bool = False) -> List[Any]:
        if not force_refresh and self._state == "connected" and self._cache_valid():
            return list(self._tools_cache)

        tools = await self._request("list_tools", lambda connection: connection.list_tools())
        self._tools_cache = list(tools)
        self._tools_fetched_at = time.monotonic()
        LOGGER.info(f"MCP server {self.server_id}: discovered {len(tools)} tools")
        if self._on_tools_discovered:
            self._on_tools_discovered(self.server_id, list(tools))
        return list(tools)

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        return await self._request(
            f"call_tool({tool_name})",
            lambda connection: connection.call_tool(tool_name, arguments),
        )

    def status(self) -> ServerStatus:
        return ServerStatus(
            server_id=self.server_id,
            name=self.config.name,
            normalized_name=self.normalized_name,
            transport=self.config.transport,
            state=self._state,
            enabled=self.config.enabled,
            tool_count=len(self._tools_cache or []),
            reconnect_attempts=self._reconnect_attempts,
            server_info=self._server_info,
            metrics=replace(self.metrics),
        )
